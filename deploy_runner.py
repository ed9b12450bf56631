import asyncio
import logging
import os
import signal
from typing import Dict, Optional, Set, Tuple

from config import Settings
from models.deploy_context import DeploymentContext
from notifications import Notifications

logger = logging.getLogger(__name__)


class DeployRunner:
    """
    Launches deployment scripts as background tasks.

    `dispatch` never waits for the script. What happens when a second push for
    the same repository arrives while a run is in flight depends on the
    `deploy_concurrency` policy:

      parallel  - runs start independently (no ordering guarantee)
      serialize - runs for one repository wait on a per-repository lock
      replace   - the in-flight run is cancelled and its process group killed
    """

    def __init__(self, settings: Settings, notifier: Optional[Notifications] = None):
        self.policy = settings.deploy_concurrency
        self.timeout = settings.deploy_timeout
        self.notifier = notifier
        self._tasks: Set[asyncio.Task] = set()
        # Latest task per repository, used by the "replace" policy
        self._running: Dict[str, asyncio.Task] = {}
        # Per-repository lock and the number of runs holding or awaiting it
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    @property
    def active(self) -> int:
        return len(self._tasks)

    def dispatch(self, script_path: str, context: DeploymentContext) -> asyncio.Task:
        repo = context.repository_full_name
        if self.policy == "replace":
            self.cancel_existing_task(repo)

        task = asyncio.create_task(
            self._run(script_path, context),
            name=f"deploy:{repo}:{context.delivery_id}"
        )
        self._tasks.add(task)
        self._running[repo] = task
        task.add_done_callback(lambda t: self._task_done(repo, t))
        logger.info(f"[{context.delivery_id}] Deployment scheduled for {repo} on branch {context.branch}.")
        return task

    def cancel_existing_task(self, repo_full_name: str):
        """
        If there is an existing deployment task for the same repository, cancel it.
        """
        existing_task = self._running.get(repo_full_name)
        if existing_task and not existing_task.done():
            logger.info(f"Cancelling existing deployment for {repo_full_name}.")
            existing_task.cancel()

    async def wait_for_all(self):
        """Wait for every in-flight deployment; used on shutdown and in tests."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self, script_path: str, context: DeploymentContext) -> Optional[int]:
        if self.policy == "serialize":
            repo = context.repository_full_name
            lock, users = self._locks.get(repo, (asyncio.Lock(), 0))
            self._locks[repo] = (lock, users + 1)
            if lock.locked():
                logger.info(f"[{context.delivery_id}] Waiting for running deployment of {context.repository_full_name}.")
            try:
                async with lock:
                    return await self.run_script(script_path, context)
            finally:
                lock, users = self._locks[repo]
                # Wildcard targets see arbitrary repository names; keep only live locks
                if users == 1:
                    del self._locks[repo]
                else:
                    self._locks[repo] = (lock, users - 1)
        return await self.run_script(script_path, context)

    async def run_script(self, script_path: str, context: DeploymentContext) -> Optional[int]:
        """
        Run `bash <script_path>` with the deployment context in its environment.

        Returns the exit code, or None when the run timed out. Failures are
        logged and notified, never raised: the webhook response is long gone.
        """
        delivery = context.delivery_id
        env = {**os.environ, **context.to_env()}

        logger.info(f"[{delivery}] Executing deployment script {script_path} for {context.repository_full_name}.")
        spawn = asyncio.ensure_future(asyncio.create_subprocess_exec(
            "bash", script_path,
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True
        ))
        try:
            process = await asyncio.shield(spawn)
        except asyncio.CancelledError:
            # The spawn carries on under the shield; reap whatever it started
            process = await spawn
            await _kill(process)
            logger.info(f"[{delivery}] Deployment of {context.repository_full_name} was cancelled.")
            raise

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            await _kill(process)
            message = f"Deployment script timed out after {self.timeout:g}s."
            logger.error(f"[{delivery}] {message}")
            await self._notify(context, "failed", message)
            return None
        except asyncio.CancelledError:
            await _kill(process)
            logger.info(f"[{delivery}] Deployment of {context.repository_full_name} was cancelled.")
            raise

        out = stdout.decode("utf-8", errors="replace").strip()
        err = stderr.decode("utf-8", errors="replace").strip()
        if out:
            logger.info(f"[{delivery}] Deployment output:\n{out}")
        if err:
            logger.warning(f"[{delivery}] Deployment stderr:\n{err}")

        if process.returncode != 0:
            message = f"Deployment script exited with status {process.returncode}."
            logger.error(f"[{delivery}] {message}")
            await self._notify(context, "failed", err or message)
        else:
            logger.info(f"[{delivery}] Deployment completed for {context.repository_full_name}.")
            await self._notify(context, "successful", "Deployment completed successfully.")
        return process.returncode

    async def _notify(self, context: DeploymentContext, status: str, details: str):
        if self.notifier is None:
            return
        loop = asyncio.get_running_loop()
        # requests is blocking
        await loop.run_in_executor(
            None,
            self.notifier.notify_deploy_event,
            context.repository_full_name,
            context.branch,
            status,
            details
        )

    def _task_done(self, repo: str, task: asyncio.Task):
        self._tasks.discard(task)
        if self._running.get(repo) is task:
            del self._running[repo]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Deployment task {task.get_name()} failed: {exc}", exc_info=exc)


async def _kill(process: asyncio.subprocess.Process):
    """Kill the script and anything it started."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    await process.wait()
