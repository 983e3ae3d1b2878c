"""User settings API endpoints."""

import logging
from typing import Any, Dict

from fastapi import APIRouter

from spec_companion.models import AppSettings
from spec_companion.utils.config import load_settings, save_settings

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get('/', response_model=AppSettings)
async def get_settings():
  return load_settings()


@router.put('/', response_model=AppSettings)
async def update_settings(data: Dict[str, Any]):
  """Validate and persist settings; unknown enum values are rejected with 400."""
  current = load_settings().model_dump(mode='json')
  current.update(data)
  return save_settings(current)
