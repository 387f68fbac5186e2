from fastapi import APIRouter
from pydantic import BaseModel, Field
from typing import Optional

from codecollab.compiler import run_code
from codecollab.config import settings

router = APIRouter()

class CompileRequest(BaseModel):
    code: str = Field(..., max_length=settings.MAX_CODE_LENGTH)
    language: str
    input: Optional[str] = ""

@router.post("/compile")
async def compile_code(request: CompileRequest):
    """Run code with the given stdin; returns {stdout} or {error, details}"""
    result = await run_code(request.code, request.language, request.input or "")
    return result.to_dict()
