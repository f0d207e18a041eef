"""
bandbot Backend Server
FastAPI + NumPy + Numba
"""
import threading
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from bandbot import __version__
from bandbot.backtest import STRATEGIES, run_backtest
from bandbot.config import (
    API_HOST, API_PORT, CORS_ORIGINS, MAX_FINISHED_JOBS, SYNC_OPTIMIZE_MAX_COMBINATIONS,
)
from bandbot.logging_config import get_logger, setup_logging
from bandbot.market_data import candles_to_arrays
from bandbot.models import (
    BacktestRequest, BacktestResult, MultiTimeframeRequest, OptimizationProgress, OptimizationRequest,
)
from bandbot.multi_timeframe import MultiTimeframeOptimizer, timeframe_results
from bandbot.optimizer import Optimizer, format_duration

logger = get_logger('api')


class OptimizationJob:
    """Background sweep; progress is polled through the API"""

    def __init__(self, optimizer: Optimizer, top: int):
        self.id = uuid.uuid4().hex
        self.optimizer = optimizer
        self.top = top
        self.progress: Optional[OptimizationProgress] = None
        self.error: Optional[str] = None
        self.finished = False
        self.started = time.time()
        self.thread = threading.Thread(target=self._run, name=f"optimize-{self.id[:8]}", daemon=True)

    def _on_progress(self, progress: OptimizationProgress):
        self.progress = progress

    def _run(self):
        try:
            self.optimizer.optimize(self._on_progress)
        except Exception as e:
            logger.error(f"Job {self.id} failed: {e}")
            self.error = str(e)
        finally:
            self.finished = True

    def snapshot(self) -> Dict[str, Any]:
        progress = self.progress or self.optimizer.last_progress
        if progress is not None:
            progress = progress.model_copy(update={'results': progress.results[:self.top]})
        return {
            "id": self.id,
            "strategy": self.optimizer.strategy,
            "status": self.status,
            "error": self.error,
            "elapsed_seconds": round(time.time() - self.started, 2),
            "progress": progress.model_dump() if progress is not None else None,
        }

    @property
    def status(self) -> str:
        if not self.finished:
            return 'cancelling' if self.optimizer.is_cancelled else 'running'
        if self.error is not None:
            return 'failed'
        return 'cancelled' if self.optimizer.cancelled else 'completed'


# Job registry (in production, use Redis/DB)
jobs: Dict[str, OptimizationJob] = {}
jobs_lock = threading.Lock()


def _prune_jobs():
    finished = [job for job in jobs.values() if job.finished]
    finished.sort(key=lambda job: job.started)
    for job in finished[:max(0, len(finished) - MAX_FINISHED_JOBS)]:
        del jobs[job.id]


def _get_job(job_id: str) -> OptimizationJob:
    with jobs_lock:
        job = jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Unknown job '{job_id}'")
    return job


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown lifecycle"""
    setup_logging()
    get_logger('startup').info(f"bandbot {__version__}: {len(STRATEGIES)} strategies, "
                               f"listening on {API_HOST}:{API_PORT}")
    yield
    with jobs_lock:
        running = [job for job in jobs.values() if not job.finished]
    for job in running:
        job.optimizer.cancel()


# Initialize FastAPI
app = FastAPI(title="bandbot Backend", version=__version__, lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _build_optimizer(request: OptimizationRequest) -> Optimizer:
    data = candles_to_arrays(request.candles)
    return Optimizer(request.strategy, data, base_config=request.config, filters=request.filters)


def _summary(optimizer: Optimizer) -> Dict[str, Any]:
    return {
        "total_combinations": optimizer.total,
        "evaluated": optimizer.evaluated,
        "pruned": optimizer.pruned,
        "filtered_out": optimizer.filtered_out,
        "failed": optimizer.failed,
    }


@app.get("/")
def read_root():
    """Health check"""
    return {
        "status": "online",
        "service": "bandbot Backend",
        "version": __version__
    }


@app.get("/strategies")
def list_strategies():
    """Available strategies with their default configurations"""
    return {
        name: rules_class.config_model().model_dump()
        for name, rules_class in STRATEGIES.items()
    }


@app.post("/backtest", response_model=BacktestResult)
def backtest(request: BacktestRequest):
    """Run single backtest"""
    try:
        start_time = time.time()
        data = candles_to_arrays(request.candles)
        result = run_backtest(request.strategy, data, request.config)
        logger.info(f"Backtest {request.strategy}: {result.totalTrades} trades "
                    f"on {len(request.candles)} candles in {time.time() - start_time:.3f}s")
        return result

    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Backtest failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/optimize")
def optimize(request: OptimizationRequest):
    """Run optimization synchronously (bounded grid size)"""
    try:
        start_time = time.time()
        optimizer = _build_optimizer(request)
        if optimizer.total > SYNC_OPTIMIZE_MAX_COMBINATIONS:
            raise HTTPException(
                status_code=400,
                detail=f"{optimizer.total:,} combinations exceeds the synchronous limit of "
                       f"{SYNC_OPTIMIZE_MAX_COMBINATIONS:,}; use /optimize/jobs",
            )
        results = optimizer.optimize()
        elapsed = time.time() - start_time

        return {
            "success": True,
            "strategy": request.strategy,
            **_summary(optimizer),
            "elapsed_seconds": round(elapsed, 2),
            "elapsed": format_duration(elapsed),
            "results": [r.model_dump() for r in results[:request.top]]
        }

    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Optimization failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/optimize/jobs", status_code=202)
def start_optimization_job(request: OptimizationRequest):
    """Start a background optimization"""
    try:
        job = OptimizationJob(_build_optimizer(request), request.top)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    with jobs_lock:
        _prune_jobs()
        jobs[job.id] = job
    job.thread.start()
    logger.info(f"Job {job.id} started: {request.strategy}, {job.optimizer.total:,} combinations")
    return {"id": job.id, "total_combinations": job.optimizer.total}


@app.get("/optimize/jobs")
def list_optimization_jobs() -> List[Dict[str, Any]]:
    with jobs_lock:
        current = list(jobs.values())
    return [{"id": job.id, "strategy": job.optimizer.strategy, "status": job.status} for job in current]


@app.get("/optimize/jobs/{job_id}")
def get_optimization_job(job_id: str):
    """Latest progress of a background optimization"""
    return _get_job(job_id).snapshot()


@app.delete("/optimize/jobs/{job_id}")
def cancel_optimization_job(job_id: str):
    """Cancel a background optimization; partial results stay available"""
    job = _get_job(job_id)
    job.optimizer.cancel()
    logger.info(f"Job {job_id} cancellation requested")
    return {"id": job_id, "status": job.status}


@app.post("/optimize/multi-timeframe")
def optimize_multi_timeframe(request: MultiTimeframeRequest):
    """Run one strategy's grid across several datasets"""
    try:
        start_time = time.time()
        optimizer = MultiTimeframeOptimizer(
            request.strategy, request.datasets, base_config=request.config, filters=request.filters)
        results = optimizer.optimize()
        elapsed = time.time() - start_time

        return {
            "success": True,
            "strategy": request.strategy,
            "datasets": len(request.datasets),
            "elapsed_seconds": round(elapsed, 2),
            "results": [r.model_dump() for r in results[:request.top]],
            "by_timeframe": {
                timeframe: [r.model_dump() for r in ranked[:request.top]]
                for timeframe, ranked in timeframe_results(results).items()
            },
        }

    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Multi-timeframe optimization failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=API_HOST, port=API_PORT)
