"""Local on-device model backend driven through the worker supervisor."""

from __future__ import annotations

import uuid

from ..errors import RewriteError
from ..local.supervisor import LocalWorkerSupervisor, validate_model_path
from ..models.backends import BackendType
from ..models.datatypes import BackendResult, RewriteRequest
from .backend import CompletionHandler, PartialHandler, start_background
from .cancellation import CancelHandle
from .prompts import PromptLibrary

TEXT_ONLY_MESSAGE = "Local provider currently supports text-only prompts."


class LocalBackend:
    """Rewrite backend that runs text-only prompts through the local worker."""

    backend_type = BackendType.LOCAL
    max_tokens = 2048

    def __init__(
        self,
        *,
        model_name: str,
        model_path: str,
        supervisor: LocalWorkerSupervisor,
        prompts: PromptLibrary | None = None,
    ) -> None:
        self.model = model_name
        self.model_path = model_path
        self.supervisor = supervisor
        self.prompts = prompts or PromptLibrary()

    @property
    def name(self) -> str:
        return self.backend_type.display_name

    def rejection_for(self, request: RewriteRequest) -> RewriteError | None:
        """Return the error for requests the local worker cannot serve."""

        if request.attachments:
            return RewriteError.local_unavailable(TEXT_ONLY_MESSAGE)
        return None

    def rewrite(
        self,
        request: RewriteRequest,
        on_partial: PartialHandler,
        on_complete: CompletionHandler,
    ) -> CancelHandle:
        """Run one generation on the worker; cancelling terminates the worker."""

        handle = CancelHandle()
        call_id = uuid.uuid4().hex

        def _run() -> None:
            try:
                rejection = self.rejection_for(request)
                if rejection is not None:
                    raise rejection
                model_path = validate_model_path(self.model_path)
                if handle.is_cancelled:
                    return
                output = self.supervisor.generate(
                    prompt=self.prompts.local_prompt(request),
                    model_path=model_path,
                    temperature=request.temperature,
                    max_tokens=self.max_tokens,
                    call_id=call_id,
                    is_cancelled=lambda: handle.is_cancelled,
                ).strip()
                if not output:
                    raise RewriteError.invalid_response()
            except RewriteError as exc:
                handle.deliver(on_complete, BackendResult.failure(exc))
                return
            handle.deliver(on_partial, output)
            handle.deliver(on_complete, BackendResult.success(output))

        handle.add_closer(lambda: self.supervisor.cancel(call_id))
        start_background("local-request", _run)
        return handle
