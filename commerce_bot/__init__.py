"""
WhatsApp Commerce Bot
Onboarding Flow + Meta Catalogue + Cart + Checkout + Paystack Payments
"""

__version__ = "1.0.0"
