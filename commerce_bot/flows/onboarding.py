import logging

from commerce_bot import messages
from commerce_bot.config import config
from commerce_bot.flow_endpoint.token import encode_flow_token
from commerce_bot.messages import OutboundMessage

logger = logging.getLogger(__name__)

ONBOARDING_FIRST_SCREEN = "BASIC_INFO"

COMING_SOON = {
    "2": "Track your business expenses feature is coming soon! Stay tuned for updates.",
    "3": "Earn rewards for every transaction feature is coming soon! Stay tuned for updates.",
}


class OnboardingFlow:
    """Onboarding invitation, main menu and menu stubs."""

    def __init__(self, flow_id: str = None, brand_name: str = None):
        self.flow_id = flow_id if flow_id is not None else config.WHATSAPP_FLOW_ID
        self.brand_name = brand_name or config.BRAND_NAME

    def onboarding_message(self, phone_number: str) -> OutboundMessage:
        logger.info(f"Sending onboarding flow to {phone_number}")
        return messages.flow(
            to=phone_number,
            flow_id=self.flow_id,
            flow_token=encode_flow_token(phone_number),
            cta="Complete Onboarding",
            screen=ONBOARDING_FIRST_SCREEN,
            header=f"Welcome to {self.brand_name}! 👋",
            body=(
                "Welcome! We're excited to have you join our platform. To get started and "
                "access all our features, please complete your onboarding by filling out a "
                "few quick questions. This will only take a minute!"
            ),
            footer=self.brand_name,
        )

    def main_menu(self, phone_number: str) -> OutboundMessage:
        return messages.text(
            phone_number,
            f"Welcome to {self.brand_name} — the smart way to manage your supplies!\n\n"
            "What would you like to do today?\n\n"
            "*1.* Place your orders quickly\n"
            "*2.* Track your business expenses\n"
            "*3.* Earn rewards for every transaction!\n\n"
            "Please reply with the number (1, 2, or 3).",
        )

    def coming_soon(self, phone_number: str, selection: str) -> list[OutboundMessage]:
        return [
            messages.text(phone_number, COMING_SOON[selection]),
            self.main_menu(phone_number),
        ]

    def success_messages(self, phone_number: str) -> list[OutboundMessage]:
        return [
            messages.text(
                phone_number,
                f"🎉 Your business has been successfully onboarded! Welcome to {self.brand_name}.",
            ),
            self.main_menu(phone_number),
        ]
