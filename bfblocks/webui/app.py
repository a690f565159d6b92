from __future__ import annotations

from typing import List, Optional

from fastapi import FastAPI, HTTPException, Response, status
from pydantic import BaseModel, Field, field_validator

from bfblocks.blocks import UnmatchedBracket
from bfblocks.interpreter import BlockInterpreter, ExecutionState, StepLimitExceeded, TapeAccessError
from bfblocks.ir import DEFAULT_TAPE_SIZE, EofPolicy, Program
from bfblocks.listing import render_program
from bfblocks.translator import Translator

from .session import SessionRecord, SessionStore


def _string_to_input_bytes(data: str) -> List[int]:
    return [ord(ch) & 0xFF for ch in data]


def _state_to_dict(state: ExecutionState) -> dict:
    return {
        "step": state.step,
        "block": state.block,
        "index": state.index,
        "command": state.command,
        "pointer": state.pointer,
        "tape_start": state.tape_start,
        "tape": list(state.tape),
        "output": list(state.output),
        "halted": state.halted,
        "entered": state.entered,
    }


def _calculate_total_steps(program: Program, input_template: List[int], cap: int = 100000) -> tuple[int, bool]:
    interpreter = BlockInterpreter()
    total = 0
    try:
        for state in interpreter.step(program, input_data=list(input_template), max_steps=cap):
            if state.step > total:
                total = state.step
    except StepLimitExceeded:
        return cap, True
    except TapeAccessError:
        return total, False
    return total, False


class TranslateRequest(BaseModel):
    source: str = ""
    eof_policy: str = EofPolicy.ZERO.value
    tape_size: int = Field(default=DEFAULT_TAPE_SIZE, ge=1)

    @field_validator("eof_policy")
    @classmethod
    def validate_eof_policy(cls, value: str) -> str:
        normalized = value.lower()
        if normalized not in {policy.value for policy in EofPolicy}:
            raise ValueError("eof_policy must be one of 'zero', 'unchanged', 'minus_one'")
        return normalized


class OperationModel(BaseModel):
    kind: str
    amount: int
    position: Optional[int]


class TerminatorModel(BaseModel):
    kind: str
    targets: List[str]
    code: Optional[int]


class BlockModel(BaseModel):
    label: str
    operations: List[OperationModel]
    terminator: Optional[TerminatorModel]


class ProgramPayload(BaseModel):
    module_name: str
    tape_size: int
    eof_policy: str
    loop_count: int
    entry: str
    blocks: List[BlockModel]
    listing: str


class RunProgramRequest(TranslateRequest):
    input: str = ""
    max_steps: Optional[int] = Field(default=100000, ge=1)


class RunProgramResponse(BaseModel):
    output: List[int]
    text: str
    steps: int
    exit_code: Optional[int]


class SessionConfiguration(TranslateRequest):
    input: str = ""
    tape_window: int = Field(default=10, ge=0)
    max_steps: Optional[int] = Field(default=None, ge=1)
    history_limit: int = Field(default=200, ge=1)


class SessionState(BaseModel):
    step: int
    block: str
    index: int
    command: Optional[str]
    pointer: int
    tape_start: int
    tape: List[int]
    output: List[int]
    halted: bool
    entered: bool


class SessionPayload(BaseModel):
    session_id: str
    source: Optional[str]
    labels: List[str]
    state: SessionState
    history: List[SessionState]
    finished: bool
    history_size: int
    breakpoints: List[str]
    hit_breakpoint: Optional[str]
    total_steps: int
    total_steps_capped: bool


class StepRequest(BaseModel):
    count: int = Field(default=1, ge=1)


class StepResponse(BaseModel):
    session_id: str
    states: List[SessionState]
    history: List[SessionState]
    finished: bool
    history_size: int
    breakpoints: List[str]
    hit_breakpoint: Optional[str]
    total_steps: int
    total_steps_capped: bool


class RunRequest(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1)
    ignore_breakpoints: bool = False


class BreakpointRequest(BaseModel):
    label: str


def _translate(payload: TranslateRequest) -> Program:
    translator = Translator(tape_size=payload.tape_size, eof_policy=EofPolicy(payload.eof_policy))
    try:
        return translator.translate(payload.source)
    except UnmatchedBracket as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc


def create_app(store: Optional[SessionStore] = None) -> FastAPI:
    session_store = store if store is not None else SessionStore()
    app = FastAPI(title="bfblocks API", version="0.1.0")

    def _get_record(session_id: str) -> SessionRecord:
        try:
            return session_store.get(session_id)
        except KeyError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    def _serialize_states(states: List[ExecutionState]) -> List[SessionState]:
        return [SessionState(**_state_to_dict(state)) for state in states]

    def _build_payload(record: SessionRecord) -> SessionPayload:
        session = record.session
        return SessionPayload(
            session_id=record.session_id,
            source=record.source,
            labels=session.program.labels(),
            state=SessionState(**_state_to_dict(session.current_state())),
            history=_serialize_states(session.history),
            finished=session.is_finished(),
            history_size=len(session.history),
            breakpoints=session.list_breakpoints(),
            hit_breakpoint=session.hit_breakpoint,
            total_steps=record.total_steps,
            total_steps_capped=record.total_steps_capped,
        )

    def _build_step_response(record: SessionRecord, states: List[ExecutionState]) -> StepResponse:
        session = record.session
        return StepResponse(
            session_id=record.session_id,
            states=_serialize_states(states),
            history=_serialize_states(session.history),
            finished=session.is_finished(),
            history_size=len(session.history),
            breakpoints=session.list_breakpoints(),
            hit_breakpoint=session.hit_breakpoint,
            total_steps=record.total_steps,
            total_steps_capped=record.total_steps_capped,
        )

    @app.post("/api/translate", response_model=ProgramPayload)
    def translate_program(payload: TranslateRequest) -> ProgramPayload:
        program = _translate(payload)
        data = program.to_dict()
        return ProgramPayload(
            module_name=program.module_name,
            tape_size=program.tape.size,
            eof_policy=program.eof_policy.value,
            loop_count=program.loop_count,
            entry=program.entry.label,
            blocks=[BlockModel(**block) for block in data["blocks"]],
            listing=render_program(program),
        )

    @app.post("/api/run", response_model=RunProgramResponse)
    def run_program(payload: RunProgramRequest) -> RunProgramResponse:
        program = _translate(payload)
        interpreter = BlockInterpreter()
        steps = 0
        try:
            for state in interpreter.step(
                program,
                input_data=_string_to_input_bytes(payload.input),
                max_steps=payload.max_steps,
            ):
                steps = state.step
        except (StepLimitExceeded, TapeAccessError) as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        output = bytes(interpreter.output_buffer)
        return RunProgramResponse(
            output=list(output),
            text=output.decode("latin-1"),
            steps=steps,
            exit_code=interpreter.exit_code,
        )

    @app.post("/api/session", response_model=SessionPayload, status_code=status.HTTP_201_CREATED)
    def create_session(payload: SessionConfiguration) -> SessionPayload:
        program = _translate(payload)
        input_bytes = _string_to_input_bytes(payload.input)
        total_steps, total_steps_capped = _calculate_total_steps(program, input_bytes)
        record = session_store.create_session(
            program=program,
            input_template=input_bytes,
            tape_window=payload.tape_window,
            max_steps=payload.max_steps,
            history_limit=payload.history_limit,
            source=payload.source,
            total_steps=total_steps,
            total_steps_capped=total_steps_capped,
        )
        return _build_payload(record)

    @app.get("/api/session/{session_id}", response_model=SessionPayload)
    def get_session(session_id: str) -> SessionPayload:
        return _build_payload(_get_record(session_id))

    @app.post("/api/session/{session_id}/reset", response_model=SessionPayload)
    def reset_session(session_id: str) -> SessionPayload:
        try:
            record = session_store.reset(session_id)
        except KeyError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return _build_payload(record)

    @app.post("/api/session/{session_id}/step", response_model=StepResponse)
    def step_session(session_id: str, payload: StepRequest) -> StepResponse:
        record = _get_record(session_id)
        try:
            states = record.session.step_forward(payload.count)
        except (StepLimitExceeded, TapeAccessError) as exc:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=str(exc),
            ) from exc
        return _build_step_response(record, list(states))

    @app.post("/api/session/{session_id}/run", response_model=StepResponse)
    def run_session(session_id: str, payload: RunRequest) -> StepResponse:
        record = _get_record(session_id)
        session = record.session
        original_breakpoints: Optional[set[str]] = None
        if payload.ignore_breakpoints:
            original_breakpoints = set(session.breakpoints)
            session.clear_breakpoints()
            session.hit_breakpoint = None

        try:
            states = list(session.run_until_break(payload.limit))
        except (StepLimitExceeded, TapeAccessError) as exc:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=str(exc),
            ) from exc
        finally:
            if payload.ignore_breakpoints and original_breakpoints is not None:
                session.breakpoints = set(original_breakpoints)
                session.hit_breakpoint = None

        return _build_step_response(record, states)

    @app.post("/api/session/{session_id}/breakpoints", response_model=SessionPayload)
    def add_breakpoint(session_id: str, payload: BreakpointRequest) -> SessionPayload:
        record = _get_record(session_id)
        try:
            record.session.add_breakpoint(payload.label)
        except KeyError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Unknown block label: {payload.label}",
            ) from exc
        return _build_payload(record)

    @app.delete("/api/session/{session_id}/breakpoints/{label}", response_model=SessionPayload)
    def remove_breakpoint(session_id: str, label: str) -> SessionPayload:
        record = _get_record(session_id)
        removed = record.session.remove_breakpoint(label)
        if not removed:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Breakpoint not found at block={label}",
            )
        return _build_payload(record)

    @app.delete("/api/session/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_session(session_id: str) -> Response:
        removed = session_store.remove(session_id)
        if not removed:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Unknown session id: {session_id}",
            )
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return app


__all__ = ["create_app"]
