"""Conversation segments: onboarding, cart and order."""

from commerce_bot.flows.cart import CartFlow
from commerce_bot.flows.onboarding import OnboardingFlow
from commerce_bot.flows.order import OrderFlow

__all__ = ["CartFlow", "OnboardingFlow", "OrderFlow"]
