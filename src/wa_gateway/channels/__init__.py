"""
Gateway Channels

Adapters for the chat networks the gateway drives. WhatsApp (through the
whatsapp-web.js bridge) is the only one.
"""
