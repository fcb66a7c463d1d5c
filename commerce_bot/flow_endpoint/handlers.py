import asyncio
import logging
import re

from commerce_bot.flow_endpoint.screens import (
    FlowRequestKind,
    FlowScreen,
    flow_response,
    request_data,
    with_errors,
)
from commerce_bot.flow_endpoint.token import phone_from_flow_token
from commerce_bot.flows.onboarding import OnboardingFlow
from commerce_bot.users import UserService
from commerce_bot.whatsapp import WhatsAppAPI

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_NAME_LENGTH = 2

UNKNOWN_USER_ERROR = "Unable to identify user. Please try again."
SAVE_FAILED_ERROR = "An error occurred while saving your details. Please try again."

ADDITIONAL_REQUIRED_FIELDS = {
    "business_address": "Business address is required",
    "nature_of_business": "Nature of business is required",
    "registration_number": "Registration number is required",
}


def field(data: dict, name: str) -> str:
    value = data.get(name)
    return value.strip() if isinstance(value, str) else ""


async def validate_basic_info(user_service: UserService, data: dict) -> tuple[dict, dict[str, str]]:
    """Validate the BASIC_INFO fields; returns the cleaned values and every error found."""
    errors = {}
    business_name = field(data, "business_name")
    contact_person = field(data, "contact_person")
    email = field(data, "email")

    if not business_name:
        errors["business_name"] = "Business name is required"
    elif len(business_name) < MIN_NAME_LENGTH:
        errors["business_name"] = "Business name must be at least 2 characters"

    if not contact_person:
        errors["contact_person"] = "Contact person name is required"
    elif len(contact_person) < MIN_NAME_LENGTH:
        errors["contact_person"] = "Name must be at least 2 characters"

    if not email:
        errors["email"] = "Email address is required"
    elif not EMAIL_PATTERN.match(email):
        errors["email"] = "Please enter a valid email address"
    elif await user_service.find_by_email(email):
        errors["email"] = "This email is already registered"

    cleaned = {"business_name": business_name, "contact_person": contact_person, "email": email}
    return cleaned, errors


# ============================================================
# BASIC_INFO
# ============================================================
class BasicInfoHandler:
    def __init__(self, user_service: UserService):
        self.user_service = user_service

    async def handle(self, request: dict, kind: FlowRequestKind) -> dict:
        if kind == FlowRequestKind.INITIAL_LOAD:
            return await self._initial_load(request)
        if kind != FlowRequestKind.SUBMISSION:
            return flow_response(request, data=request_data(request))

        data = request_data(request)
        if not data:
            logger.warning("⚠️ BASIC_INFO submission arrived without form data")

        cleaned, errors = await validate_basic_info(self.user_service, data)
        if errors:
            logger.debug(f"BASIC_INFO validation errors: {sorted(errors)}")
            return with_errors(request, errors)

        logger.info("Basic info validated, moving to ADDITIONAL_INFO")
        return flow_response(request, FlowScreen.ADDITIONAL_INFO.value, cleaned)

    async def _initial_load(self, request: dict) -> dict:
        phone_number = phone_from_flow_token(request.get("flow_token"))
        if phone_number and await self.user_service.exists_by_phone(phone_number):
            logger.info(f"User {phone_number} already onboarded, skipping to SUCCESS")
            return flow_response(request, FlowScreen.SUCCESS.value)
        return flow_response(request)


# ============================================================
# ADDITIONAL_INFO
# ============================================================
class AdditionalInfoHandler:
    def __init__(self, user_service: UserService, whatsapp: WhatsAppAPI, onboarding: OnboardingFlow):
        self.user_service = user_service
        self.whatsapp = whatsapp
        self.onboarding = onboarding
        self.background_tasks: set[asyncio.Task] = set()

    async def handle(self, request: dict, kind: FlowRequestKind) -> dict:
        data = request_data(request)
        if kind != FlowRequestKind.SUBMISSION:
            return flow_response(request, data=data)

        phone_number = phone_from_flow_token(request.get("flow_token"))
        if not phone_number:
            logger.error("Cannot extract phone number from flow_token")
            return with_errors(request, {"_general": UNKNOWN_USER_ERROR})

        cleaned, errors = await validate_basic_info(self.user_service, data)
        for name, message in ADDITIONAL_REQUIRED_FIELDS.items():
            cleaned[name] = field(data, name)
            if not cleaned[name]:
                errors[name] = message
        if errors:
            logger.debug(f"ADDITIONAL_INFO validation errors: {sorted(errors)}")
            return with_errors(request, errors)

        try:
            await self.user_service.create(
                {
                    "phone_number": phone_number,
                    "business_name": cleaned["business_name"],
                    "contact_person": cleaned["contact_person"],
                    "email": cleaned["email"],
                    "address": cleaned["business_address"],
                    "nature_of_business": cleaned["nature_of_business"],
                    "registration_number": cleaned["registration_number"],
                }
            )
        except Exception as e:
            logger.error(f"Failed to create user {phone_number}: {type(e).__name__}: {e}")
            return with_errors(request, {"_general": SAVE_FAILED_ERROR})

        logger.info(f"✅ User created via onboarding flow: {phone_number}")
        self._notify_in_background(phone_number)
        return flow_response(request, FlowScreen.SUCCESS.value)

    def _notify_in_background(self, phone_number: str) -> None:
        task = asyncio.create_task(self.send_success_messages(phone_number))
        self.background_tasks.add(task)
        task.add_done_callback(self.background_tasks.discard)

    async def send_success_messages(self, phone_number: str) -> None:
        """Send the welcome text and main menu; failures are logged only."""
        try:
            for message in self.onboarding.success_messages(phone_number):
                await self.whatsapp.send_message(message)
        except Exception as e:
            logger.error(f"Failed to send onboarding success messages to {phone_number}: {e}")
