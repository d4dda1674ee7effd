# Gengar Bark
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Interaction handler for App Home buttons and MCP server modals.

Slack needs an answer to every interaction within three seconds. Work is
split accordingly:

- inline: opening the add/edit modals (trigger ids expire), switching the
  add modal to a template, and shape validation of submitted modals
  (returned as ``response_action: errors``);
- background: store mutations, connectivity verification, follow-up DMs
  and App Home republishing, run by the event processor.
"""

import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from gengar_bark.error_handler import ErrorHandler
from gengar_bark.event_processor import AsyncEventProcessor, ProcessingResult
from gengar_bark.home_handler import HomeHandler
from gengar_bark.logging_config import get_logger
from gengar_bark.mcp.errors import MCPConfigurationError, ValidationError
from gengar_bark.mcp.models import (
    MCPConfigInput,
    MCPConfigPatch,
    VerificationRequest,
    VerificationStatus,
)
from gengar_bark.mcp.service import (
    MCPConfigurationService,
    validate_server_name,
    validate_transport_type,
    validate_url_format,
)
from gengar_bark.mcp.templates import get_template_by_id
from gengar_bark.models import BlockAction, EditCacheToken, SlackMessage, ViewSubmission, WebhookEvent
from gengar_bark.slack_api_client import SlackAPIClient, SlackAPIRetryError
from gengar_bark.templates import (
    ACTION_ADD_SERVER,
    ACTION_DELETE_SERVER,
    ACTION_DISABLE_SERVER,
    ACTION_EDIT_SERVER,
    ACTION_ENABLE_SERVER,
    ACTION_REFRESH_HOME,
    ACTION_TEST_CONNECTION,
    ADD_MODAL_CALLBACK_ID,
    AUTH_TOKEN_BLOCK,
    EDIT_MODAL_CALLBACK_ID,
    MANUAL_TEMPLATE_VALUE,
    SERVER_NAME_BLOCK,
    SKIP_VERIFICATION_BLOCK,
    SKIP_VERIFICATION_VALUE,
    TEMPLATE_BLOCK,
    TRANSPORT_TYPE_BLOCK,
    URL_BLOCK,
    ServerModalTemplate,
    VerificationResultTemplate,
)


logger = get_logger(__name__)

BACKGROUND_ACTIONS = {
    ACTION_ENABLE_SERVER,
    ACTION_DISABLE_SERVER,
    ACTION_DELETE_SERVER,
    ACTION_TEST_CONNECTION,
    ACTION_REFRESH_HOME,
}


@dataclass
class InteractionResponse:
    """HTTP answer to an interaction request; ``body`` None means an empty 200."""
    status_code: int = 200
    body: Optional[Dict[str, Any]] = None


@dataclass
class ServerForm:
    """Values read from a submitted add/edit modal."""
    server_name: str
    transport_type: str
    url: str
    auth_token: str
    skip_verification: bool
    template_id: Optional[str] = None

    @classmethod
    def from_submission(cls, submission: ViewSubmission) -> "ServerForm":
        template_id = submission.selected_value(*TEMPLATE_BLOCK)
        if template_id == MANUAL_TEMPLATE_VALUE:
            template_id = None
        return cls(
            server_name=submission.text_value(*SERVER_NAME_BLOCK),
            transport_type=submission.selected_value(*TRANSPORT_TYPE_BLOCK) or "",
            url=submission.text_value(*URL_BLOCK),
            auth_token=submission.text_value(*AUTH_TOKEN_BLOCK),
            skip_verification=SKIP_VERIFICATION_VALUE in submission.checked_values(
                *SKIP_VERIFICATION_BLOCK
            ),
            template_id=template_id,
        )

    def errors(self, token_required: bool = False) -> Dict[str, str]:
        """
        Per-block shape errors for ``response_action: errors``.

        Only the form's shape is checked here; SSRF, uniqueness and
        persistence are handled by the service in the background.
        """
        errors: Dict[str, str] = {}

        if not self.server_name:
            errors[SERVER_NAME_BLOCK[0]] = "Server name is required"
        else:
            try:
                validate_server_name(self.server_name)
            except ValidationError as e:
                errors[SERVER_NAME_BLOCK[0]] = e.message

        if not self.transport_type:
            errors[TRANSPORT_TYPE_BLOCK[0]] = "Transport type is required"
        else:
            try:
                validate_transport_type(self.transport_type)
            except ValidationError as e:
                errors[TRANSPORT_TYPE_BLOCK[0]] = e.message

        if not self.url:
            errors[URL_BLOCK[0]] = "Server URL is required"
        else:
            try:
                validate_url_format(self.url)
            except ValidationError as e:
                errors[URL_BLOCK[0]] = e.message

        if token_required and not self.auth_token:
            errors[AUTH_TOKEN_BLOCK[0]] = "Authentication token is required for this template"

        return errors

    def to_payload(self) -> Dict[str, Any]:
        return {
            "server_name": self.server_name,
            "transport_type": self.transport_type,
            "url": self.url,
            "auth_token": self.auth_token,
            "skip_verification": self.skip_verification,
            "template_id": self.template_id,
        }


class InteractionHandler:
    """
    Handles App Home button clicks and MCP modal submissions.
    """

    def __init__(
        self,
        service: MCPConfigurationService,
        slack_client: SlackAPIClient,
        home_handler: HomeHandler,
        event_processor: AsyncEventProcessor,
        error_handler: Optional[ErrorHandler] = None
    ):
        """
        Initialize interaction handler.

        Args:
            service: MCP configuration service
            slack_client: Slack Web API client
            home_handler: Publishes the App Home after changes
            event_processor: Background queue for slow work
            error_handler: Converts errors into Slack messages
        """
        self.service = service
        self.slack_client = slack_client
        self.home_handler = home_handler
        self.event_processor = event_processor
        self.error_handler = error_handler or ErrorHandler()
        self.modals = ServerModalTemplate()
        self.verification_template = VerificationResultTemplate()

    def register(self) -> None:
        """Register the background handlers with the event processor."""
        self.event_processor.register_handler('block_actions', self.process_block_action)
        self.event_processor.register_handler('view_submission', self.process_view_submission)

    # Inline (request path)

    async def handle_interaction(self, payload: Dict[str, Any]) -> InteractionResponse:
        """
        Handle a decoded ``payload`` from /slack/interactions.

        Args:
            payload: Interaction payload

        Returns:
            InteractionResponse to send back to Slack
        """
        interaction_type = payload.get('type')

        try:
            if interaction_type == 'block_actions':
                for action in payload.get('actions') or []:
                    await self.handle_action(BlockAction.from_payload(payload, action))
                return InteractionResponse()

            if interaction_type == 'view_submission':
                return await self.handle_view_submission(ViewSubmission.from_payload(payload))
        except PydanticValidationError as e:
            logger.warning("Malformed interaction payload", extra={
                'interaction_type': interaction_type,
                'error': str(e)
            })
            return InteractionResponse(status_code=400, body={'error': 'Invalid payload'})

        logger.debug("Ignoring interaction", extra={'interaction_type': interaction_type})
        return InteractionResponse()

    async def handle_action(self, action: BlockAction) -> None:
        """
        Route one block action.

        Modal-related actions are handled inline; everything else is queued.
        """
        logger.info(
            "Processing block action",
            extra={
                "action_id": action.action_id,
                "user_id": action.user_id,
                "team_id": action.team_id
            }
        )

        try:
            if action.action_id == ACTION_ADD_SERVER:
                await self.slack_client.open_view(action.trigger_id, self.modals.render_add())
            elif action.action_id == ACTION_EDIT_SERVER:
                await self.open_edit_modal(action)
            elif action.action_id == TEMPLATE_BLOCK[1]:
                await self.apply_template_selection(action)
            elif action.action_id in BACKGROUND_ACTIONS:
                await self.event_processor.process_async(WebhookEvent(
                    event_id=f"action-{uuid.uuid4().hex}",
                    event_type='block_actions',
                    user_id=action.user_id,
                    team_id=action.team_id,
                    payload={'action_id': action.action_id, 'value': action.value},
                ))
            else:
                logger.warning("Unknown action_id", extra={"action_id": action.action_id})

        except MCPConfigurationError as e:
            await self._notify(
                action.user_id,
                self.error_handler.handle_configuration_error(
                    e, context={"action_id": action.action_id}
                )
            )
        except SlackAPIRetryError as e:
            await self._notify(
                action.user_id,
                self.error_handler.handle_slack_api_error(
                    e, context={"action_id": action.action_id}
                )
            )

    async def open_edit_modal(self, action: BlockAction) -> None:
        """
        Open the edit modal.

        Uses the snapshot carried in the button value when it decodes, and
        falls back to loading the configuration by id.
        """
        token = EditCacheToken.decode(action.value)
        if token is None:
            config_id = EditCacheToken.extract_id(action.value)
            if not config_id:
                logger.warning("Edit action without configuration id", extra={
                    "user_id": action.user_id
                })
                return
            config = await self.service.get_configuration(action.user_id, config_id)
            token = EditCacheToken.from_configuration(config)

        await self.slack_client.open_view(action.trigger_id, self.modals.render_edit(token))

    async def apply_template_selection(self, action: BlockAction) -> None:
        """Re-render the add modal for the chosen template."""
        if not action.view_id:
            return

        template_id = action.selected_option
        if template_id == MANUAL_TEMPLATE_VALUE or get_template_by_id(template_id or "") is None:
            template_id = None

        await self.slack_client.update_view(
            action.view_id,
            self.modals.render_add(template_id),
            hash=action.view_hash
        )

    async def handle_view_submission(self, submission: ViewSubmission) -> InteractionResponse:
        """
        Validate a submitted modal and queue the change.

        Returns:
            ``response_action: errors`` for shape errors, otherwise an empty 200
            that closes the modal
        """
        if submission.callback_id not in (ADD_MODAL_CALLBACK_ID, EDIT_MODAL_CALLBACK_ID):
            logger.warning("Unknown view callback", extra={'callback_id': submission.callback_id})
            return InteractionResponse()

        form = ServerForm.from_submission(submission)

        token_required = False
        if submission.callback_id == ADD_MODAL_CALLBACK_ID and form.template_id:
            template = get_template_by_id(form.template_id)
            token_required = template is not None and "auth_token" in template.required_fields

        errors = form.errors(token_required=token_required)
        if errors:
            logger.info("Modal submission rejected", extra={
                'callback_id': submission.callback_id,
                'user_id': submission.user_id,
                'fields': sorted(errors)
            })
            return InteractionResponse(body={'response_action': 'errors', 'errors': errors})

        payload = form.to_payload()
        payload['callback_id'] = submission.callback_id
        payload['config_id'] = submission.private_metadata or None

        await self.event_processor.process_async(WebhookEvent(
            event_id=f"view-{uuid.uuid4().hex}",
            event_type='view_submission',
            user_id=submission.user_id,
            team_id=submission.team_id,
            payload=payload,
        ))
        return InteractionResponse()

    # Background (event processor)

    async def process_block_action(self, event: WebhookEvent) -> ProcessingResult:
        """Background handler for queued App Home button clicks."""
        user_id = event.user_id
        action_id = event.payload.get('action_id')
        config_id = EditCacheToken.extract_id(event.payload.get('value'))

        async def run() -> None:
            if action_id != ACTION_REFRESH_HOME and not config_id:
                logger.warning("Action without configuration id", extra={
                    "action_id": action_id,
                    "user_id": user_id
                })
            elif action_id == ACTION_ENABLE_SERVER:
                await self.service.enable_configuration(user_id, config_id)
            elif action_id == ACTION_DISABLE_SERVER:
                await self.service.disable_configuration(user_id, config_id)
            elif action_id == ACTION_DELETE_SERVER:
                await self.service.delete_configuration(user_id, config_id)
            elif action_id == ACTION_TEST_CONNECTION:
                config, result = await self.service.verify_configuration(user_id, config_id)
                await self._notify(
                    user_id,
                    self.verification_template.render(config.server_name, "tested", result)
                )

        return await self._run_background(event, run, context={'action_id': action_id})

    async def process_view_submission(self, event: WebhookEvent) -> ProcessingResult:
        """Background handler for validated add/edit modal submissions."""
        payload = event.payload

        async def run() -> None:
            if payload.get('callback_id') == EDIT_MODAL_CALLBACK_ID:
                await self._update_server(event.user_id, payload)
            else:
                await self._create_server(event.user_id, payload)

        return await self._run_background(
            event, run, context={'callback_id': payload.get('callback_id')}
        )

    async def _create_server(self, user_id: str, payload: Dict[str, Any]) -> None:
        config_input = MCPConfigInput(
            server_name=payload['server_name'],
            transport_type=payload['transport_type'],
            url=payload['url'],
            auth_token=payload.get('auth_token') or None,
        )
        config = await self.service.create_configuration(user_id, config_input)

        if payload.get('skip_verification'):
            await self._notify(user_id, self.verification_template.render(config.server_name, "created"))
            return

        result = await self.service.verify_connection(config_input, user_id=user_id)
        await self.service.record_verification(
            user_id,
            config.id,
            result,
            request=VerificationRequest(
                server_name=config.server_name,
                transport_type=config.transport_type,
                url=config.url,
                auth_token=config_input.auth_token,
            ),
        )
        await self._notify(
            user_id, self.verification_template.render(config.server_name, "created", result)
        )

    async def _update_server(self, user_id: str, payload: Dict[str, Any]) -> None:
        config_id = payload.get('config_id')
        if not config_id:
            raise ValidationError("Missing configuration id", field="config_id")

        patch = MCPConfigPatch(
            server_name=payload['server_name'],
            transport_type=payload["transport_type"],
            url=payload['url'],
            # blank keeps the existing token
            auth_token=payload.get('auth_token') or None,
        )
        config = await self.service.update_configuration(user_id, config_id, patch)

        if payload.get('skip_verification') or config.verification_status == VerificationStatus.VERIFIED:
            await self._notify(user_id, self.verification_template.render(config.server_name, "updated"))
            return

        config, result = await self.service.verify_configuration(user_id, config_id)
        await self._notify(
            user_id, self.verification_template.render(config.server_name, "updated", result)
        )

    async def _run_background(self, event: WebhookEvent, run, context: Dict[str, Any]) -> ProcessingResult:
        """
        Run a background job, DM the user when it fails and republish the
        App Home in every case.
        """
        start = time.perf_counter()
        result = ProcessingResult(
            success=True, event_id=event.event_id, processing_time_ms=0, context=context
        )

        try:
            await run()
        except MCPConfigurationError as e:
            await self._notify(
                event.user_id,
                self.error_handler.handle_configuration_error(e, context=context)
            )
            result.success = False
            result.error = e.message
        except SlackAPIRetryError as e:
            self.error_handler.handle_slack_api_error(e, context=context)
            result.success = False
            result.error = str(e)
        except Exception as e:
            await self._notify(
                event.user_id,
                self.error_handler.handle_generic_error(e, context=context)
            )
            result.success = False
            result.error = str(e)

        try:
            await self.home_handler.publish_home(event.user_id)
        except Exception as e:
            self.error_handler.handle(e, context={**context, 'step': 'publish_home'})
            result.success = False
            result.error = result.error or str(e)

        result.processing_time_ms = int((time.perf_counter() - start) * 1000)
        return result

    async def _notify(self, user_id: str, message: SlackMessage) -> None:
        """Send a DM to the user; delivery failures are logged, not raised."""
        try:
            await self.slack_client.post_message(
                channel=user_id,
                text=message.text,
                blocks=message.blocks
            )
        except SlackAPIRetryError as e:
            self.error_handler.handle_slack_api_error(e, context={'user_id': user_id, 'step': 'notify'})
