#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
GOAL ORCHESTRATION ENGINE - HTTP SURFACE
Debug and integration endpoints around the goal orchestrator
"""

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import List, Dict, Any, Optional
import logging
import os
import uuid

from goal_config_helper import get_effective_config
from goal_models import GoalConfigurationError
from goal_orchestrator import GoalOrchestrator
from goal_state_manager import GoalStateConcurrencyError, GoalStateManager

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# ========================================================================================
# CONFIGURATION
# ========================================================================================

PORT = int(os.getenv("PORT", 10000))
HOST = os.getenv("HOST", "0.0.0.0")

# ========================================================================================
# API MODELS
# ========================================================================================

class OrchestrateRequest(BaseModel):
    message: str
    session_id: Optional[str] = None
    user_id: str
    tenant_id: str
    goal_config: Optional[Dict[str, Any]] = None
    company_goal_config: Optional[Dict[str, Any]] = None
    conversation_history: List[str] = Field(default_factory=list)
    auto_activate: bool = True


# ========================================================================================
# APPLICATION
# ========================================================================================

app = FastAPI(title="Goal Orchestration Engine", version="1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

state_manager = GoalStateManager()
orchestrator = GoalOrchestrator(state_manager=state_manager)


@app.post("/goals/orchestrate")
def orchestrate_endpoint(request: OrchestrateRequest):
    """Run one message through the goal orchestrator"""
    session_id = request.session_id or str(uuid.uuid4())

    try:
        effective = get_effective_config(request.company_goal_config, request.goal_config)

        if not effective.is_enabled:
            logger.info(f"ℹ️ Goals disabled for tenant {request.tenant_id}, skipping orchestration")
            response = orchestrator.analyze_without_goals(request.message, request.conversation_history).to_dict()
            response["session_id"] = session_id
            response["config_source"] = effective.source
            return response

        result = orchestrator.orchestrate_goals(
            request.message,
            session_id,
            request.user_id,
            request.tenant_id,
            effective.config,
            request.conversation_history
        )

        if request.auto_activate:
            orchestrator.activate_recommendations(result, session_id, request.user_id, request.tenant_id)

        response = result.to_dict()
        response["session_id"] = session_id
        response["config_source"] = effective.source
        return response

    except GoalConfigurationError as e:
        logger.error(f"❌ Invalid goal configuration for tenant {request.tenant_id}: {e}")
        raise HTTPException(status_code=422, detail=str(e))
    except GoalStateConcurrencyError as e:
        logger.warning(f"⚠️ Concurrent orchestration refused: {e}")
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"❌ Orchestration error: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Orchestration error: {str(e)}")


@app.get("/goals/state/{tenant_id}/{user_id}/{session_id}")
def get_state_endpoint(tenant_id: str, user_id: str, session_id: str):
    """Goal state snapshot for debugging"""
    try:
        return orchestrator.get_goal_state(session_id, user_id, tenant_id)
    except GoalStateConcurrencyError as e:
        raise HTTPException(status_code=409, detail=str(e))


@app.delete("/goals/state/{tenant_id}/{user_id}/{session_id}")
def reset_state_endpoint(tenant_id: str, user_id: str, session_id: str):
    try:
        orchestrator.reset_goal_state(session_id, user_id, tenant_id)
        return {"status": "reset", "session_id": session_id}
    except GoalStateConcurrencyError as e:
        raise HTTPException(status_code=409, detail=str(e))


@app.get("/health")
def health_check():
    return {
        "status": "healthy",
        "active_conversations": len(state_manager.get_all_states()),
        "version": "1.0"
    }


# Entry point
if __name__ == "__main__":
    import uvicorn
    logger.info(f"🚀 Starting goal orchestration engine on {HOST}:{PORT}")
    uvicorn.run(app, host=HOST, port=PORT, log_level=LOG_LEVEL.lower())
