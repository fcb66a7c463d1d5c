import logging

from commerce_bot.flow_endpoint.handlers import AdditionalInfoHandler, BasicInfoHandler
from commerce_bot.flow_endpoint.screens import (
    FlowRequestKind,
    FlowScreen,
    classify_flow_request,
    flow_response,
    request_data,
)

logger = logging.getLogger(__name__)


class FlowProcessor:
    """Routes a decrypted Flow request to the handler for its screen."""

    def __init__(self, basic_info: BasicInfoHandler, additional_info: AdditionalInfoHandler):
        self.handlers = {
            FlowScreen.BASIC_INFO.value: basic_info,
            FlowScreen.ADDITIONAL_INFO.value: additional_info,
        }

    async def process(self, request: dict) -> dict:
        kind = classify_flow_request(request)
        screen = request.get("screen") or ""
        logger.info(f"Processing flow request - screen: {screen or '-'}, kind: {kind.value}")

        if kind == FlowRequestKind.HEALTH_CHECK:
            return flow_response(request, data={"status": "active"})

        handler = self.handlers.get(screen)
        if handler is None:
            return flow_response(request, data=request_data(request))
        return await handler.handle(request, kind)
