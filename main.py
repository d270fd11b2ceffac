import asyncio
import platform
# --- WINDOWS FIX: Force ProactorEventLoop (CRITICAL for Playwright) ---
# This ensures Playwright can launch its internal process on Windows.
if platform.system() == "Windows":
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())
# --- END WINDOWS FIX ---

import os
import threading
from typing import Callable, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request

from agent import PollAgent
from config_store import TOGGLE_FLAGS
from logger import agent_logger
from models import ModelSelection, ToggleRequest

# --- 1. Load Environment Variables ---
load_dotenv()
AUTOSTART = os.getenv("AGENT_AUTOSTART", "true").lower() == "true"


class AgentRunner:
    """
    Runs the agent on a dedicated thread with its own event loop; the control
    API hands it coroutines through run_coroutine_threadsafe.
    """

    def __init__(self, agent_factory: Callable[[], PollAgent] = PollAgent):
        self.agent_factory = agent_factory
        self.agent: Optional[PollAgent] = None
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._ready = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self, timeout: float = 60) -> bool:
        self._thread = threading.Thread(target=self._run, name="poll-agent", daemon=True)
        self._thread.start()
        self._ready.wait(timeout)
        return self.agent is not None

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self.loop = loop
        try:
            self.agent = self.agent_factory()
            loop.run_until_complete(self.agent.launch())
        except Exception as e:
            agent_logger.error(f"Agent failed to launch: {e}", exc_info=True)
            self.agent = None
        finally:
            self._ready.set()
        if self.agent is not None:
            loop.run_forever()
        loop.close()

    async def call(self, method: str, *args):
        if self.agent is None or self.loop is None:
            raise HTTPException(status_code=503, detail="Agent is not running.")
        if self.agent.killed:
            raise HTTPException(status_code=503, detail="Browser context lost. Restart the agent.")
        future = asyncio.run_coroutine_threadsafe(getattr(self.agent, method)(*args), self.loop)
        return await asyncio.wrap_future(future)

    def stop(self, timeout: float = 15) -> None:
        if self.agent is None or self.loop is None:
            return
        future = asyncio.run_coroutine_threadsafe(self.agent.close(), self.loop)
        try:
            future.result(timeout)
        except Exception as e:
            agent_logger.warning(f"Agent did not close cleanly: {e}")
        self.loop.call_soon_threadsafe(self.loop.stop)


# --- 2. Initialize FastAPI App ---
app = FastAPI(title="Poll Agent Control Panel")


def get_runner(request: Request) -> AgentRunner:
    runner = getattr(request.app.state, "runner", None)
    if runner is None:
        raise HTTPException(status_code=503, detail="Agent is not running.")
    return runner


@app.on_event("startup")
async def startup_event():
    """Launch the browser agent next to the control API."""
    if not AUTOSTART:
        agent_logger.info("AGENT_AUTOSTART is off; control API only")
        return
    runner = AgentRunner()
    if await asyncio.to_thread(runner.start):
        app.state.runner = runner
        agent_logger.info("✅ Poll agent launched")


@app.on_event("shutdown")
async def shutdown_event():
    runner = getattr(app.state, "runner", None)
    if runner is not None:
        await asyncio.to_thread(runner.stop)


# --- 3. Control Endpoints ---

@app.get("/status")
async def get_status(runner: AgentRunner = Depends(get_runner)):
    return await runner.call("status")


@app.post("/control/start")
async def start_agent(runner: AgentRunner = Depends(get_runner)):
    agent_logger.info("CONTROL: start")
    return await runner.call("start")


@app.post("/control/stop")
async def stop_agent(runner: AgentRunner = Depends(get_runner)):
    agent_logger.info("CONTROL: stop")
    return await runner.call("stop", "manual")


@app.post("/control/toggle/{flag}")
async def toggle_flag(flag: str, payload: Optional[ToggleRequest] = None, runner: AgentRunner = Depends(get_runner)):
    if flag not in TOGGLE_FLAGS:
        raise HTTPException(
            status_code=422,
            detail=f"Unknown toggle '{flag}'. Expected one of: {', '.join(TOGGLE_FLAGS)}",
        )
    email = str(payload.email) if payload and payload.email else None
    agent_logger.info(f"CONTROL: toggle {flag}")
    return await runner.call("toggle", flag, email)


@app.post("/control/model")
async def select_model(payload: ModelSelection, runner: AgentRunner = Depends(get_runner)):
    agent_logger.info(f"CONTROL: model {payload.model}")
    return await runner.call("set_model", payload.model)


@app.post("/control/settings")
async def open_settings(runner: AgentRunner = Depends(get_runner)):
    return await runner.call("open_settings")


def run():
    host = os.getenv("CONTROL_HOST", "127.0.0.1")
    port = int(os.getenv("CONTROL_PORT", "8000"))
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run()
