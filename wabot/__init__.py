"""
🚀 WhatsApp Engine Package Init
-------------------------------
Conversational automation for the optical shop's WhatsApp line: rule-based
bot, appointment negotiation, campaign group sends and reminders.
"""

__version__ = "1.0.0"
