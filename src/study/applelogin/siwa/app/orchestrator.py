"""
Pipeline Orchestrators

This module implements the two user-triggered pipelines as explicit state
machines:

Sign-in:
    idle -> awaiting_authorization -> checking_credential -> confirming
    -> completed

Withdrawal:
    idle -> awaiting_authorization -> exchanging_code -> signing -> revoking
    -> confirming -> completed

Any non-terminal state may move to failed (an error from a step) or
cancelled (the owning context went away).

Each step starts only after the previous step produced a result. A run is
single-flight: while one is active, further triggers are ignored rather than
queued or restarted. The confirming state holds a short settling delay
between the last successful step and the completion signal.

Cancellation does not roll anything back. A withdrawal cancelled between the
code exchange and the revocation leaves an unrevoked refresh token with Apple;
the user has to run the withdrawal again.
"""

import asyncio
import logging
from typing import Optional, Protocol, Union

import sentry_sdk

from study.applelogin.siwa.app.service import AuthorizationService
from study.applelogin.siwa.apple.errors import AuthorizationError
from study.applelogin.siwa.apple.provider import (
    AuthorizationCredential,
    CredentialState,
    IdentityProviderGateway,
)
from study.applelogin.siwa.model.pipeline import (
    PipelineKind,
    PipelineRun,
    PipelineState,
    RunGuard,
)

logger = logging.getLogger(__name__)

_InboxItem = Union[AuthorizationCredential, BaseException]


class PipelineObserver(Protocol):
    def on_completed(self) -> None:
        ...

    def on_failed(self, error: BaseException) -> None:
        ...


class _RunDelegate:
    """Routes identity provider callbacks to the inbox of a single run.

    Callbacks arriving after the run ended are dropped, so a late answer can
    never feed into another run.
    """

    def __init__(self, run: PipelineRun, inbox: "asyncio.Queue[_InboxItem]") -> None:
        self._run = run
        self._inbox = inbox

    def authorization_completed(self, credential: AuthorizationCredential) -> None:
        if self._run.is_terminal:
            logger.debug("Dropping credential for finished run %s", self._run.run_id)
            return
        self._inbox.put_nowait(credential)

    def authorization_failed(self, error: BaseException) -> None:
        if self._run.is_terminal:
            logger.debug("Dropping error for finished run %s", self._run.run_id)
            return
        self._inbox.put_nowait(error)


class PipelineOrchestrator:
    kind: PipelineKind

    def __init__(
        self,
        service: AuthorizationService,
        gateway: IdentityProviderGateway,
        observer: Optional[PipelineObserver] = None,
        guard: Optional[RunGuard] = None,
        settle_delay: Optional[float] = None,
        authorization_timeout: Optional[float] = None,
    ) -> None:
        self.service = service
        self.gateway = gateway
        self.observer = observer
        self.guard = guard if guard is not None else service.run_guard
        self.settle_delay = (
            service.settings.settle_delay if settle_delay is None else settle_delay
        )
        self.authorization_timeout = (
            service.settings.authorization_timeout
            if authorization_timeout is None
            else authorization_timeout
        )

        self._run: Optional[PipelineRun] = None
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def run(self) -> Optional[PipelineRun]:
        """The current or most recent run."""
        return self._run

    @property
    def state(self) -> PipelineState:
        if self._run is None:
            return PipelineState.idle
        return self._run.state

    def trigger(self) -> Optional[PipelineRun]:
        """
        Start a run, or ignore the trigger if a run is already active.

        Must be called from within a running event loop.

        Returns:
            The new run, or None when the trigger was ignored

        Raises:
            EntropyError: If no nonce can be generated. This is fatal and is
                not reported as a failed run.
        """
        run = PipelineRun(kind=self.kind)
        if not self.guard.acquire(run):
            logger.info("Ignoring %s trigger, a run is already active", self.kind.value)
            self.service.metrics_client.increment(
                f"siwa.pipeline.{self.kind.value}.ignored"
            )
            return None

        try:
            request = self.service.authorization_request(run)
        except BaseException:
            self.guard.release(run)
            logger.critical("Unable to start %s run", self.kind.value, exc_info=True)
            raise

        self._run = run
        run.transition(PipelineState.awaiting_authorization)
        logger.info("Run %s: %s started", run.run_id, self.kind.value)

        inbox: "asyncio.Queue[_InboxItem]" = asyncio.Queue()
        self._task = asyncio.create_task(self._execute(run, inbox))
        self._task.add_done_callback(lambda task: self._task_done(run, task))

        delegate = _RunDelegate(run, inbox)
        try:
            self.gateway.perform_request(request, delegate)
        except Exception as e:
            delegate.authorization_failed(e)

        return run

    def cancel(self) -> bool:
        """Cancel the active run at its current suspension point."""
        if self._task is None or self._task.done():
            return False
        return self._task.cancel()

    async def wait(self) -> Optional[PipelineRun]:
        """Wait for the current run to reach a terminal state."""
        task = self._task
        if task is None:
            return self._run

        await asyncio.wait([task])
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()  # type: ignore[misc]
        return self._run

    async def _execute(self, run: PipelineRun, inbox: "asyncio.Queue[_InboxItem]") -> None:
        error: Optional[BaseException] = None
        try:
            credential = await self._await_authorization(run, inbox)
            await self._run_steps(run, credential)

            self._move(run, PipelineState.confirming)
            await asyncio.sleep(self.settle_delay)
            self._move(run, PipelineState.completed)

        except asyncio.CancelledError:
            if run.refresh_token is not None:
                logger.warning(
                    "Run %s cancelled in %s, refresh token was not revoked",
                    run.run_id,
                    run.state.value,
                )
            else:
                logger.info("Run %s cancelled in %s", run.run_id, run.state.value)
            run.transition(PipelineState.cancelled)
            self.service.metrics_client.increment(
                f"siwa.pipeline.{self.kind.value}.cancelled"
            )
            raise

        except Exception as e:
            error = e
            sentry_sdk.capture_exception(e)
            logger.error(
                "Run %s failed in %s: %r", run.run_id, run.state.value, e
            )
            run.error = e
            run.transition(PipelineState.failed)
            self.service.metrics_client.increment(
                f"siwa.pipeline.{self.kind.value}.failed",
                1,
                tag_dict={"exception": type(e).__name__},
            )

        finally:
            run.discard_secrets()
            self.guard.release(run)

        if error is None:
            self.service.metrics_client.increment(
                f"siwa.pipeline.{self.kind.value}.completed"
            )
            if self.observer is not None:
                self.observer.on_completed()
        elif self.observer is not None:
            self.observer.on_failed(error)

    def _task_done(self, run: PipelineRun, task: "asyncio.Task[None]") -> None:
        # A task cancelled before its first step never enters _execute.
        if task.cancelled() and not run.is_terminal:
            logger.info("Run %s cancelled before it started", run.run_id)
            run.transition(PipelineState.cancelled)
            run.discard_secrets()
            self.guard.release(run)

    async def _await_authorization(
        self, run: PipelineRun, inbox: "asyncio.Queue[_InboxItem]"
    ) -> AuthorizationCredential:
        try:
            async with asyncio.timeout(self.authorization_timeout):
                while True:
                    item = await inbox.get()

                    if isinstance(item, AuthorizationError):
                        raise item
                    if isinstance(item, BaseException):
                        raise AuthorizationError(f"Authorization failed: {item}") from item

                    if item.authorization_code:
                        run.authorization_code = item.authorization_code
                        return item

                    # The user may have dismissed the sheet; keep waiting.
                    logger.info(
                        "Run %s: credential without authorization code ignored",
                        run.run_id,
                    )
        except TimeoutError as e:
            raise AuthorizationError(
                f"No authorization within {self.authorization_timeout} seconds"
            ) from e

    def _move(self, run: PipelineRun, state: PipelineState) -> None:
        run.transition(state)
        logger.info("Run %s: %s", run.run_id, state.value)

    async def _run_steps(
        self, run: PipelineRun, credential: AuthorizationCredential
    ) -> None:
        raise NotImplementedError()


class SignInOrchestrator(PipelineOrchestrator):
    kind = PipelineKind.sign_in

    async def _run_steps(
        self, run: PipelineRun, credential: AuthorizationCredential
    ) -> None:
        self._move(run, PipelineState.checking_credential)

        await self.service.remember_credential(credential)

        # A later withdrawal reuses this secret for its code exchange.
        run.client_secret = self.service.create_client_secret()
        await self.service.store_client_secret(run.client_secret)

        credential_state = await self.gateway.credential_state(credential.user)
        logger.info("Run %s: credential state %s", run.run_id, credential_state.value)
        if credential_state != CredentialState.authorized:
            raise AuthorizationError(f"Credential state is {credential_state.value}")


class WithdrawalOrchestrator(PipelineOrchestrator):
    kind = PipelineKind.withdrawal

    async def _run_steps(
        self, run: PipelineRun, credential: AuthorizationCredential
    ) -> None:
        self._move(run, PipelineState.exchanging_code)

        exchange_secret = await self.service.stored_client_secret()
        if exchange_secret is None:
            exchange_secret = self.service.create_client_secret()

        code = run.authorization_code
        run.authorization_code = None
        if not code:
            raise AuthorizationError("No authorization code to exchange")
        run.refresh_token = await self.service.exchange_code(code, exchange_secret)

        # Revocation always uses a secret minted after the exchange.
        self._move(run, PipelineState.signing)
        run.client_secret = self.service.create_client_secret()
        await self.service.store_client_secret(run.client_secret)

        self._move(run, PipelineState.revoking)
        result = await self.service.revoke_token(run.client_secret, run.refresh_token)
        result.raise_for_confirmation()
        run.refresh_token = None
