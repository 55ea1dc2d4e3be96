from typing import List

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..conversation.catalog import SCENARIO_PRESETS, presets_for

router = APIRouter(prefix="/presets", tags=["presets"])


class PresetOut(BaseModel):
	key: str
	title: str
	description: str


def _dump(audience: str) -> List[PresetOut]:
	return [PresetOut(key=p.key, title=p.title, description=p.description) for p in presets_for(audience)]


@router.get("")
async def all_presets():
	return {audience: _dump(audience) for audience in SCENARIO_PRESETS}


@router.get("/{audience}", response_model=List[PresetOut])
async def audience_presets(audience: str):
	if audience not in SCENARIO_PRESETS:
		raise HTTPException(status_code=404, detail=f"unknown audience '{audience}'")
	return _dump(audience)
