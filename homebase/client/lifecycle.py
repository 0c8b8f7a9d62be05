"""
Proposal lifecycle orchestration

Sequences the proposal workflow against the API: create, edit, delete,
attaching files, uploading a contract and collecting the homeowner's
signature. Every mutation invalidates the cached proposal collections rather
than patching them, and every failure becomes a destructive toast while the
dialog stays open for a manual retry.
"""

import inspect
import logging
from typing import Awaitable, Callable, Iterable, Optional, Union

import httpx
from pydantic import BaseModel

from ..shared.validators import CONTRACT_ACCEPTED_FILE_TYPES
from .api import ApiError, HomeBaseClient, InvalidTransitionError, ValidationFailure
from .cache import QueryCache, proposals_key
from .forms import build_create_payload, build_update_payload
from .notifier import Notifier
from .signature import SignatureCapture
from .uploader import LocalFile, ObjectUploadGateway

logger = logging.getLogger(__name__)

DELETE_CONFIRMATION = "Are you sure you want to delete this proposal?"

ConfirmCallback = Callable[[str], Union[Awaitable[bool], bool]]


class MutationResult(BaseModel):
    """An updated proposal plus the side-effect events the API reported"""

    entity: dict
    events: list[dict] = []


def can_sign(proposal: dict) -> bool:
    """The Sign action is offered for an attached, unsigned contract"""
    return bool(
        proposal.get("contractFilePath")
        and not proposal.get("customerSignature")
        and proposal.get("homeownerId")
    )


def is_signed(proposal: dict) -> bool:
    return bool(proposal.get("customerSignature"))


def split_events(response: dict) -> MutationResult:
    entity = dict(response)
    events = entity.pop("newAchievements", None) or []
    return MutationResult(entity=entity, events=events)


class ProposalLifecycle:
    def __init__(
        self,
        api: HomeBaseClient,
        notifier: Notifier,
        cache: Optional[QueryCache] = None,
        storage_client: Optional[httpx.AsyncClient] = None,
        signature: Optional[SignatureCapture] = None,
        confirm: Optional[ConfirmCallback] = None,
    ):
        self.api = api
        self.notifier = notifier
        self.cache = cache or QueryCache()
        self.storage_client = storage_client
        self.signature = signature or SignatureCapture()
        self.confirm = confirm

        self.dialog_open = False
        self.editing: Optional[dict] = None
        self.signing: Optional[dict] = None
        self._in_flight: set[str] = set()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_proposals(
        self, contractor_id: Optional[str] = None, homeowner_id: Optional[str] = None
    ) -> list[dict]:
        return await self.cache.get_or_fetch(
            proposals_key(contractor_id, homeowner_id),
            lambda: self.api.list_proposals(contractor_id, homeowner_id),
        )

    def _invalidate(self) -> None:
        self.cache.invalidate_proposals()

    # ------------------------------------------------------------------
    # Dialog state
    # ------------------------------------------------------------------

    def open_create(self) -> None:
        self.editing = None
        self.dialog_open = True

    def open_edit(self, proposal: dict) -> None:
        self.editing = proposal
        self.dialog_open = True

    def close_dialog(self) -> None:
        self.editing = None
        self.dialog_open = False

    def is_busy(self, action: str) -> bool:
        return action in self._in_flight

    def _claim(self, action: str) -> bool:
        # A control stays disabled until its request settles
        if action in self._in_flight:
            logger.info(f"⏳ Ignoring duplicate {action} while a request is in flight")
            return False
        self._in_flight.add(action)
        return True

    def _validation_toast(self, error: ValidationFailure) -> None:
        self.notifier.toast("Validation error", "; ".join(error.messages), variant="destructive")

    def _failure_toast(self, action: str, error: ApiError) -> None:
        if isinstance(error, InvalidTransitionError):
            description = f"Cannot change status from {error.current} to {error.target}"
        else:
            description = f"Failed to {action}. Please try again"
        self.notifier.toast("Error", description, variant="destructive")

    def _announce(self, events: list[dict]) -> None:
        for event in events:
            self.notifier.toast(
                f"🏆 Achievement Unlocked: {event.get('title')}",
                event.get("description"),
            )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(self, values: dict) -> Optional[dict]:
        """Validate and create a proposal; returns it, or None on failure"""
        try:
            payload = build_create_payload(values)
        except ValidationFailure as e:
            self._validation_toast(e)
            return None

        if not self._claim("create"):
            return None
        try:
            proposal = await self.api.create_proposal(payload)
        except ApiError as e:
            logger.error(f"❌ Failed to create proposal: {e}")
            self._failure_toast("create proposal", e)
            return None
        finally:
            self._in_flight.discard("create")

        self._invalidate()
        self.close_dialog()
        self.notifier.toast("Success", "Proposal created successfully")
        logger.info(f"✅ Created proposal {proposal['id']}")
        return proposal

    async def update(self, proposal_id: str, patch: dict) -> Optional[MutationResult]:
        """
        Send a partial update.

        Achievements the API reports come back as ``events`` and are also
        announced, one toast each, in the order received.
        """
        try:
            payload = build_update_payload(patch)
        except ValidationFailure as e:
            self._validation_toast(e)
            return None

        action = f"update:{proposal_id}"
        if not self._claim(action):
            return None
        try:
            response = await self.api.update_proposal(proposal_id, payload)
        except ApiError as e:
            logger.error(f"❌ Failed to update proposal {proposal_id}: {e}")
            self._failure_toast("update proposal", e)
            return None
        finally:
            self._in_flight.discard(action)

        result = split_events(response)
        self._invalidate()
        self.close_dialog()
        self.notifier.toast("Success", "Proposal updated successfully")
        self._announce(result.events)
        return result

    async def delete(self, proposal_id: str) -> bool:
        """Delete after explicit confirmation; returns True if deleted"""
        if self.confirm is None:
            logger.warning(f"⚠️ Refusing to delete {proposal_id} without a confirmation prompt")
            return False

        confirmed = self.confirm(DELETE_CONFIRMATION)
        if inspect.isawaitable(confirmed):
            confirmed = await confirmed
        if not confirmed:
            return False

        action = f"delete:{proposal_id}"
        if not self._claim(action):
            return False
        try:
            await self.api.delete_proposal(proposal_id)
        except ApiError as e:
            logger.error(f"❌ Failed to delete proposal {proposal_id}: {e}")
            self._failure_toast("delete proposal", e)
            return False
        finally:
            self._in_flight.discard(action)

        self._invalidate()
        self.notifier.toast("Success", "Proposal deleted successfully")
        return True

    async def attach_files(self, proposal_id: str, files: Iterable[LocalFile]) -> Optional[MutationResult]:
        """
        Upload supporting documents and store their paths on the proposal.

        The proposal's attachments become exactly the files uploaded by this call.
        """
        action = f"attach:{proposal_id}"
        if not self._claim(action):
            return None
        try:
            gateway = ObjectUploadGateway(
                self.api, self.notifier, storage_client=self.storage_client, file_type="proposal"
            )
            if not gateway.add_files(files):
                return None

            uploaded = await gateway.upload()
            if not uploaded:
                return None

            return await self.update(proposal_id, {"attachments": [file.path for file in uploaded]})
        finally:
            self._in_flight.discard(action)

    async def upload_contract(self, proposal_id: str, file: LocalFile) -> Optional[dict]:
        """Upload a single contract document and attach it to the proposal"""
        action = f"contract:{proposal_id}"
        if not self._claim(action):
            return None
        try:
            gateway = ObjectUploadGateway(
                self.api,
                self.notifier,
                storage_client=self.storage_client,
                max_number_of_files=1,
                accepted_file_types=CONTRACT_ACCEPTED_FILE_TYPES,
                file_type="contract",
            )
            if not gateway.add_files([file]):
                return None

            uploaded = await gateway.upload()
            if not uploaded:
                return None

            proposal = await self.api.set_contract(proposal_id, uploaded[0].path)
        except ApiError as e:
            logger.error(f"❌ Failed to attach contract to {proposal_id}: {e}")
            self._failure_toast("upload contract", e)
            return None
        finally:
            self._in_flight.discard(action)

        self._invalidate()
        self.notifier.toast("Success", "Contract uploaded successfully")
        return proposal

    def begin_signing(self, proposal: dict) -> SignatureCapture:
        """
        Open the signature dialog for one proposal.

        Raises:
            ValidationFailure: If the proposal cannot be signed
        """
        if not can_sign(proposal):
            raise ValidationFailure(["This proposal cannot be signed"])
        self.signing = proposal
        self.signature.open()
        return self.signature

    def cancel_signing(self) -> None:
        self.signature.cancel()
        self.signing = None

    async def complete_signing(self) -> Optional[MutationResult]:
        """Submit the captured signature for the proposal being signed"""
        if self.signing is None:
            logger.warning("⚠️ No proposal is being signed")
            return None

        try:
            signature = await self.signature.submit()
        except ValidationFailure as e:
            self._validation_toast(e)
            return None

        proposal_id = self.signing["id"]
        action = f"sign:{proposal_id}"
        if not self._claim(action):
            return None
        try:
            response = await self.api.sign_proposal(proposal_id, signature.to_payload())
        except ApiError as e:
            logger.error(f"❌ Failed to sign proposal {proposal_id}: {e}")
            self._failure_toast("sign contract", e)
            # Keep the dialog open with the same proposal for a retry
            self.signature.visible = True
            return None
        finally:
            self._in_flight.discard(action)

        self.signing = None
        result = split_events(response)
        self._invalidate()
        self.notifier.toast("Success", "Contract signed successfully")
        self._announce(result.events)
        return result
