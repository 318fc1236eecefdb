"""Rewrite orchestration for Clipboard Refiner.

Responsibilities:
- Resolve the configured backend and run at most one rewrite at a time.
- Discard stale callbacks by request identity and coalesce streamed partials.
- Fall back to the offline cache on failure; record history and cache on success.
- Drive local worker load/unload as serialized lifecycle operations.

Key types:
- `RewriteEngine`: facade owning backends, cache, history, and the local worker.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import threading
from typing import Iterable, Protocol

from ..config import SettingsProvider
from ..errors import RewriteError
from ..history import HistorySink
from ..llm.backend import CompletionHandler, PartialHandler, RewriteBackend, start_background
from ..llm.cache import OfflineCacheStore
from ..llm.cancellation import CancelHandle
from ..llm.local_backend import LocalBackend
from ..llm.prompts import PromptLibrary
from ..local.supervisor import LocalWorkerSupervisor, validate_model_path
from ..models.backends import BackendType
from ..models.datatypes import (
    BackendResult,
    HistoryEntry,
    ImageAttachment,
    RequestIdentity,
    RewriteRequest,
)
from ..models.styles import RewriteStyle
from ..provider_factory import BackendFactory
from ..telemetry.logger import EngineLogger
from .coalescer import DEFAULT_COALESCE_INTERVAL_SECONDS, PartialCoalescer


DEFAULT_SYNC_TIMEOUT_SECONDS = 60.0
MISSING_LOCAL_PATH_MESSAGE = "Add a local model path for this model in Provider settings."
LOCAL_BUSY_MESSAGE = "Another local model operation is in progress."


class BackendProvider(Protocol):
    """Builds a backend adapter for the selected backend, or `None` if unconfigured."""

    def create(
        self,
        backend: BackendType,
        settings: SettingsProvider,
        prompts: PromptLibrary,
    ) -> RewriteBackend | None:
        """Return an adapter for `backend`."""


@dataclass(slots=True)
class _ActiveRequest:
    """Bookkeeping for the single in-flight rewrite."""

    identity: RequestIdentity
    request: RewriteRequest
    backend_type: BackendType
    model: str
    cache_key: str
    on_partial: PartialHandler
    on_complete: CompletionHandler
    coalescer: PartialCoalescer | None = None
    handle: CancelHandle | None = None


class RewriteEngine:
    """Single-request rewrite facade over cloud and local backends.

    Every state mutation and every caller callback happens while holding the
    engine's re-entrant lock, after checking that the callback still belongs
    to the active request.
    """

    def __init__(
        self,
        settings: SettingsProvider,
        *,
        cache: OfflineCacheStore | None = None,
        history: HistorySink | None = None,
        supervisor: LocalWorkerSupervisor | None = None,
        factory: BackendProvider | None = None,
        prompts: PromptLibrary | None = None,
        coalesce_interval_seconds: float = DEFAULT_COALESCE_INTERVAL_SECONDS,
    ) -> None:
        """Wire collaborators; omitted ones are built from `settings`."""

        self.settings = settings
        self.cache = cache if cache is not None else OfflineCacheStore(settings.cache_path)
        self.history = history
        self.supervisor = supervisor or LocalWorkerSupervisor()
        self.factory = factory or BackendFactory(self.supervisor)
        self._prompts = prompts
        self.coalesce_interval_seconds = coalesce_interval_seconds
        self._logger = EngineLogger("orchestrator")

        self._lock = threading.RLock()
        self._lifecycle = ThreadPoolExecutor(max_workers=1, thread_name_prefix="local-lifecycle")
        self._active: _ActiveRequest | None = None
        self._current_output = ""
        self._last_error: RewriteError | None = None
        self._loaded_local_model_name: str | None = None
        self._is_loading_local_model = False
        self._is_unloading_local_model = False

    @property
    def is_processing(self) -> bool:
        with self._lock:
            return self._active is not None

    @property
    def current_output(self) -> str:
        """Return the latest partial or final text surfaced to the caller."""

        with self._lock:
            return self._current_output

    @property
    def last_error(self) -> RewriteError | None:
        with self._lock:
            return self._last_error

    @property
    def is_local_model_loaded(self) -> bool:
        return self.supervisor.is_loaded

    @property
    def loaded_local_model_name(self) -> str | None:
        with self._lock:
            return self._loaded_local_model_name if self.supervisor.is_loaded else None

    @property
    def is_loading_local_model(self) -> bool:
        with self._lock:
            return self._is_loading_local_model

    @property
    def is_unloading_local_model(self) -> bool:
        with self._lock:
            return self._is_unloading_local_model

    @property
    def has_valid_backend(self) -> bool:
        """Return whether the selected backend has a key or local model path."""

        backend = self.settings.selected_backend
        if backend is BackendType.LOCAL:
            model = self.settings.model_for(backend)
            return self.settings.local_model_path_for(model) is not None
        return self.settings.api_key_for(backend) is not None

    def build_request(
        self,
        text: str,
        style: RewriteStyle | None = None,
        attachments: Iterable[ImageAttachment] = (),
    ) -> RewriteRequest:
        """Build a request using the settings' aggressiveness, streaming flag, and skill."""

        return RewriteRequest(
            text=text,
            style=style or self.settings.default_style,
            aggressiveness=self.settings.aggressiveness,
            skill=self.settings.selected_skill,
            attachments=tuple(attachments),
            streaming=self.settings.streaming_enabled,
        )

    def rewrite(
        self,
        request: RewriteRequest,
        on_partial: PartialHandler,
        on_complete: CompletionHandler,
    ) -> RequestIdentity:
        """Start a rewrite, superseding any request already in flight.

        `on_partial` receives coalesced partial text; `on_complete` receives
        exactly one result unless the request is cancelled or superseded, in
        which case neither callback fires again.
        """

        with self._lock:
            self._cancel_locked()

            backend_type = self.settings.selected_backend
            model = self.settings.model_for(backend_type)
            active = _ActiveRequest(
                identity=RequestIdentity.mint(),
                request=request,
                backend_type=backend_type,
                model=model,
                cache_key=OfflineCacheStore.key_for_request(
                    backend=backend_type.display_name, model=model, request=request
                ),
                on_partial=on_partial,
                on_complete=on_complete,
            )
            active.coalescer = PartialCoalescer(
                lambda text: self._deliver_partial_locked(active, text),
                self._lock,
                self.coalesce_interval_seconds,
            )
            self._active = active
            self._current_output = ""
            self._last_error = None
            self._logger.info(
                "request_start",
                backend=backend_type.config_id,
                model=model,
                style=request.style.name.lower(),
                streaming=request.streaming,
                attachments=len(request.attachments),
            )

            prompts = self._prompts or PromptLibrary(self.settings.system_prompt_overrides)
            backend = self.factory.create(backend_type, self.settings, prompts)
            if backend is None:
                error = (
                    RewriteError.local_unavailable(MISSING_LOCAL_PATH_MESSAGE)
                    if backend_type is BackendType.LOCAL
                    else RewriteError.invalid_api_key()
                )
                start_background(
                    "rewrite-unconfigured",
                    lambda: self._handle_complete(active, BackendResult.failure(error)),
                )
            elif isinstance(backend, LocalBackend):
                rejection = backend.rejection_for(request)
                if rejection is not None:
                    start_background(
                        "rewrite-rejected",
                        lambda: self._handle_complete(active, BackendResult.failure(rejection)),
                    )
                    return active.identity
                if not self._worker_bound_to(backend.model_path):
                    self._is_loading_local_model = True
                self._lifecycle.submit(self._prepare_local, active, backend)
            else:
                self._dispatch_locked(active, backend)
            return active.identity

    def cancel(self) -> None:
        """Abort the active request; its callbacks will not fire again."""

        with self._lock:
            self._cancel_locked()

    def rewrite_sync(
        self,
        request: RewriteRequest,
        timeout: float = DEFAULT_SYNC_TIMEOUT_SECONDS,
        on_partial: PartialHandler | None = None,
    ) -> BackendResult:
        """Run a rewrite and block until it completes or `timeout` elapses.

        On timeout the request is cancelled and a `timeout` failure is returned.
        """

        done = threading.Event()
        results: list[BackendResult] = []

        def _on_complete(result: BackendResult) -> None:
            results.append(result)
            done.set()

        identity = self.rewrite(request, on_partial or (lambda _text: None), _on_complete)
        if not done.wait(timeout):
            with self._lock:
                if self._active is not None and self._active.identity == identity:
                    self._cancel_locked()
                if not results:
                    return BackendResult.failure(RewriteError.timeout())
        return results[0]

    def load_local_model(self, on_complete: CompletionHandler) -> bool:
        """Load the selected local model in the background.

        Returns `False` when the request is rejected because a rewrite or another
        load/unload is in flight; the rejection is still reported through
        `on_complete`.
        """

        with self._lock:
            if self._active is not None or self._is_loading_local_model or self._is_unloading_local_model:
                self._report_later(on_complete, BackendResult.failure(RewriteError.local_unavailable(LOCAL_BUSY_MESSAGE)))
                return False

            model = self.settings.model_for(BackendType.LOCAL)
            model_path = self.settings.local_model_path_for(model)
            if model_path is None:
                self._report_later(
                    on_complete,
                    BackendResult.failure(RewriteError.local_unavailable(MISSING_LOCAL_PATH_MESSAGE)),
                )
                return True
            if self._worker_bound_to(model_path):
                self._loaded_local_model_name = model
                self._report_later(on_complete, BackendResult.success(model))
                return True

            self._is_loading_local_model = True
            self._lifecycle.submit(self._run_load, model, model_path, on_complete)
            return True

    def unload_local_model(self, on_complete: CompletionHandler) -> bool:
        """Stop the local worker in the background.

        Returns `False` when rejected because a rewrite or another load/unload
        is in flight; the rejection is still reported through `on_complete`.
        """

        with self._lock:
            if self._active is not None or self._is_loading_local_model or self._is_unloading_local_model:
                self._report_later(on_complete, BackendResult.failure(RewriteError.local_unavailable(LOCAL_BUSY_MESSAGE)))
                return False
            if not self.supervisor.is_loaded:
                self._loaded_local_model_name = None
                self._report_later(on_complete, BackendResult.success(""))
                return True

            self._is_unloading_local_model = True
            self._lifecycle.submit(self._run_unload, on_complete)
            return True

    def clear_offline_cache(self) -> None:
        """Drop every offline cache entry and its snapshot file."""

        self.cache.clear()
        self._logger.info("cache_cleared")

    def shutdown(self) -> None:
        """Cancel work, stop the local worker, and persist the cache."""

        self.cancel()
        self._lifecycle.shutdown(wait=True)
        self.supervisor.unload()
        with self._lock:
            self._loaded_local_model_name = None
        self.cache.flush()

    def _dispatch_locked(self, active: _ActiveRequest, backend: RewriteBackend) -> None:
        """Start the backend call and remember its cancel handle."""

        active.handle = backend.rewrite(
            active.request,
            lambda text: self._handle_partial(active, text),
            lambda result: self._handle_complete(active, result),
        )

    def _prepare_local(self, active: _ActiveRequest, backend: LocalBackend) -> None:
        """Load the local worker on the lifecycle thread, then dispatch.

        A request cancelled or superseded before or during loading never keeps
        the worker it caused to start.
        """

        with self._lock:
            if self._active is not active:
                return

        try:
            self.supervisor.ensure(validate_model_path(backend.model_path))
        except RewriteError as exc:
            with self._lock:
                if self._active is active:
                    self._is_loading_local_model = False
            self._handle_complete(active, BackendResult.failure(exc))
            return

        with self._lock:
            if self._active is active:
                self._is_loading_local_model = False
                self._loaded_local_model_name = backend.model
                self._dispatch_locked(active, backend)
                return
        self._release_local_worker()

    def _handle_partial(self, active: _ActiveRequest, text: str) -> None:
        with self._lock:
            if self._active is not active or active.coalescer is None:
                return
            active.coalescer.submit(text)

    def _deliver_partial_locked(self, active: _ActiveRequest, text: str) -> None:
        if self._active is not active:
            return
        self._current_output = text
        active.on_partial(text)

    def _handle_complete(self, active: _ActiveRequest, result: BackendResult) -> None:
        """Finish the active request, falling back to the offline cache on failure."""

        with self._lock:
            if self._active is not active:
                return

            if not result.ok:
                cached = (
                    self.cache.lookup(active.cache_key)
                    if self.settings.offline_cache_enabled
                    else None
                )
                if cached is not None:
                    if active.coalescer is not None:
                        active.coalescer.discard()
                    self._logger.info(
                        "cache_fallback",
                        backend=active.backend_type.config_id,
                        error_kind=result.error.kind.value if result.error else None,
                    )
                    self._deliver_partial_locked(active, cached)
                    result = BackendResult.success(cached, from_cache=True)

            if active.coalescer is not None:
                active.coalescer.flush()
            self._finish_locked(active, result)

    def _finish_locked(self, active: _ActiveRequest, result: BackendResult) -> None:
        self._active = None
        if result.ok:
            self._current_output = result.text or ""
            self._last_error = None
            self._logger.info(
                "request_complete",
                backend=active.backend_type.config_id,
                model=active.model,
                served_from_cache=result.from_cache,
                output_chars=len(result.text or ""),
            )
        else:
            self._last_error = result.error
            self._logger.warning(
                "request_failed",
                backend=active.backend_type.config_id,
                model=active.model,
                error_kind=result.error.kind.value if result.error else None,
            )

        if result.ok and not result.from_cache:
            self._record_success_locked(active, result.text or "")

        active.on_complete(result)

        if active.backend_type is BackendType.LOCAL and not self.settings.keep_local_model_loaded:
            self._lifecycle.submit(self._release_local_worker)

    def _record_success_locked(self, active: _ActiveRequest, text: str) -> None:
        """Append history and cache a fresh result."""

        if self.settings.history_enabled and self.history is not None:
            self.history.add_entry(
                HistoryEntry(
                    original_text=active.request.text,
                    rewritten_text=text,
                    style=active.request.style.value,
                    backend=active.backend_type.display_name,
                )
            )
        if self.settings.offline_cache_enabled:
            self.cache.store(active.cache_key, text)

    def _cancel_locked(self) -> None:
        active = self._active
        if active is None:
            return
        self._active = None
        if active.coalescer is not None:
            active.coalescer.discard()
        if active.handle is not None:
            active.handle.cancel()
        if active.backend_type is BackendType.LOCAL:
            self.supervisor.terminate()
            self._loaded_local_model_name = None
            self._is_loading_local_model = False
        self._logger.info("request_cancel", backend=active.backend_type.config_id)

    def _run_load(self, model: str, model_path: str, on_complete: CompletionHandler) -> None:
        try:
            self.supervisor.ensure(validate_model_path(model_path))
        except RewriteError as exc:
            result = BackendResult.failure(exc)
        else:
            result = BackendResult.success(model)

        with self._lock:
            self._is_loading_local_model = False
            if result.ok:
                self._loaded_local_model_name = model
                self._logger.info("local_model_loaded", model=model)
            else:
                self._last_error = result.error
                self._logger.warning(
                    "local_model_load_failed",
                    model=model,
                    error_kind=result.error.kind.value if result.error else None,
                )
            on_complete(result)

    def _run_unload(self, on_complete: CompletionHandler) -> None:
        self.supervisor.unload()
        with self._lock:
            self._is_unloading_local_model = False
            self._loaded_local_model_name = None
            self._logger.info("local_model_unloaded")
            on_complete(BackendResult.success(""))

    def _release_local_worker(self) -> None:
        """Stop the worker after a local rewrite when it should not stay loaded."""

        self.supervisor.unload()
        with self._lock:
            self._loaded_local_model_name = None

    def _worker_bound_to(self, model_path: str) -> bool:
        return self.supervisor.is_loaded and self.supervisor.model_path == model_path.strip()

    def _report_later(self, on_complete: CompletionHandler, result: BackendResult) -> None:
        """Report a lifecycle result off the caller's thread, under the engine lock."""

        def _report() -> None:
            with self._lock:
                on_complete(result)

        start_background("local-lifecycle-report", _report)

