"""Per-turn pipeline: objective check, diff blocks, parse, execute, report back.

The manager owns no model transport; it reads one model reply and appends
the results to the conversation for the next turn.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .diffblocks import DiffBlockProcessor, parse_edit_blocks
from .errors import ParseError, ValidationError
from .executor import Executor
from .models import Task, TaskExecution, TaskResponse
from .parser import parse_tasks
from .utils import DebugLog


@dataclass
class Message:
    role: str
    content: str
    timestamp: float = field(default_factory=time.time)


class Conversation:
    def add_message(self, role: str, content: str) -> None:
        raise NotImplementedError


class ListConversation(Conversation):
    """In-memory conversation."""

    def __init__(self):
        self.messages: List[Message] = []

    def add_message(self, role: str, content: str) -> None:
        self.messages.append(Message(role=role, content=content))


@dataclass
class ObjectiveValidation:
    is_valid: bool = True
    original_objective: str = ""
    warning: str = ""


class ObjectiveValidator:
    def validate(self, text: str) -> ObjectiveValidation:
        raise NotImplementedError


class NoopObjectiveValidator(ObjectiveValidator):
    def validate(self, text: str) -> ObjectiveValidation:
        return ObjectiveValidation(is_valid=True)


@dataclass
class TaskEvent:
    # task_started | task_completed | task_failed | execution_completed |
    # diff_blocks_applied | objective_change_auto_continue
    type: str
    task: Optional[Task] = None
    response: Optional[TaskResponse] = None
    message: str = ""
    progress: float = 0.0
    # short text for a status line
    user_message: str = ""


_MEMORY_DESCRIPTIONS = {
    "create": "creating memory",
    "update": "updating memory",
    "delete": "deleting memory",
    "get": "retrieving memory",
    "list": "listing memories",
}
_TODO_DESCRIPTIONS = {
    "create": "creating todo items",
    "check": "checking todo item",
    "uncheck": "unchecking todo item",
    "show": "showing todo list",
    "clear": "clearing todo list",
}


def simple_task_description(task: Task) -> str:
    t = task.type
    if t == "ReadFile":
        return f"📖 reading {task.path}" if task.path else "📖 reading file"
    if t == "EditFile":
        return f"editing {task.path}" if task.path else "editing file"
    if t == "RunShell":
        if not task.command:
            return "running command"
        cmd = task.command if len(task.command) <= 50 else task.command[:47] + "..."
        return f"running: {cmd}"
    if t == "ListDir":
        return f"listing {task.path}" if task.path else "listing directory"
    if t == "Search":
        return f"searching for: {task.query}" if task.query else "searching files"
    if t == "Memory":
        return _MEMORY_DESCRIPTIONS.get(task.memory_operation, "managing memory")
    if t == "Todo":
        return _TODO_DESCRIPTIONS.get(task.todo_operation, "managing todo list")
    return "executing task"


def format_task_result(task: Task, response: TaskResponse) -> str:
    """The TASK_RESULT message the model sees for one executed task."""
    out = f"TASK_RESULT: {task.description()}\n"
    if response.success:
        out += "STATUS: Success\n"
    else:
        out += "STATUS: Failed\n"
        if response.error:
            out += f"ERROR: {response.error}\n"
    if not response.success and response.contextual_error is not None:
        content = response.llm_summary()
    else:
        content = response.actual_content or response.output
    if content:
        out += f"CONTENT:\n{content}\n"
    return out


class Manager:
    def __init__(
        self,
        executor: Executor,
        conversation: Conversation,
        log: Optional[DebugLog] = None,
        objective_validator: Optional[ObjectiveValidator] = None,
        diff_processor: Optional[DiffBlockProcessor] = None,
        on_event: Optional[Callable[[TaskEvent], None]] = None,
    ):
        self.executor = executor
        self.conversation = conversation
        self.log = log or executor.log
        self.objective_validator = objective_validator or NoopObjectiveValidator()
        self.diff_processor = diff_processor or executor.diff_processor
        self.on_event = on_event

    def _emit(self, event: TaskEvent) -> None:
        self.log.dbg(f"event {event.type}: {event.message}")
        if self.on_event is not None:
            self.on_event(event)

    def handle_response(self, text: str) -> Optional[TaskExecution]:
        """Run everything one model reply asks for.

        Returns None when the reply holds no tasks or was redirected to the
        original objective. ParseError and ValidationError are reported to
        the model through the conversation and then re-raised.
        """
        validation = self.objective_validator.validate(text)
        if not validation.is_valid:
            self._redirect(validation)
            return None

        if parse_edit_blocks(text):
            return self._apply_diff_blocks(text)

        try:
            tasks = parse_tasks(text, log=self.log)
        except (ParseError, ValidationError) as exc:
            field_note = f" (field: {exc.field})" if isinstance(exc, ValidationError) and exc.field else ""
            self.conversation.add_message(
                "system",
                f"TASK_PARSE_ERROR: {exc}{field_note}\nFix the task format and send it again.",
            )
            raise
        if not tasks:
            return None
        return self._run(tasks)

    def _redirect(self, validation: ObjectiveValidation) -> None:
        objective = validation.original_objective
        warning = validation.warning or (
            f"⚠️ Objective change detected. Your original objective was: \"{objective}\""
        )
        self.conversation.add_message("system", warning)
        self.conversation.add_message(
            "user",
            f"Please continue working on your original objective: \"{objective}\". "
            "Focus on completing this objective rather than expanding the scope.",
        )
        self._emit(
            TaskEvent(
                type="objective_change_auto_continue",
                message=f"Objective change detected. Redirecting LLM back to original objective: {objective}",
            )
        )

    def _apply_diff_blocks(self, text: str) -> TaskExecution:
        blocks = parse_edit_blocks(text)
        tasks = [
            Task(
                type="EditFile",
                path=b.path,
                content=f">>LOOM_EDIT file={b.path}\n{b.diff_text}\n<<LOOM_EDIT",
                loom_edit_command=True,
            )
            for b in blocks
        ]
        policy = self.executor.confirmation_policy
        dry_run = any(t.requires_confirmation(policy) for t in tasks)
        result = self.diff_processor.process(text, dry_run=dry_run)

        execution = TaskExecution(tasks=tasks)
        for task, outcome in zip(tasks, result.outcomes):
            status = f"LOOM_EDIT block {outcome.index} applied to {outcome.path}"
            execution.responses.append(
                TaskResponse(
                    task=task,
                    success=outcome.success,
                    output=status if outcome.success else "",
                    actual_content=status if outcome.success else "",
                    error=outcome.error,
                )
            )
        execution.close()
        message = result.format_message()
        self.conversation.add_message("assistant", message)
        self._emit(TaskEvent(type="diff_blocks_applied", message=message, progress=1.0))
        return execution

    def _run(self, tasks: List[Task]) -> TaskExecution:
        execution = TaskExecution(tasks=list(tasks))
        total = len(tasks)
        for i, task in enumerate(tasks):
            simple = simple_task_description(task)
            started = f"📖 Reading {task.path}..." if task.type == "ReadFile" else f"Executing {simple}..."
            self._emit(
                TaskEvent(
                    type="task_started",
                    task=task,
                    message=f"Executing task {i + 1}/{total}: {task.description()}",
                    progress=i / total,
                    user_message=started,
                )
            )

            response = self.executor.execute(task)
            execution.responses.append(response)

            if response.success:
                self._emit(
                    TaskEvent(
                        type="task_completed",
                        task=task,
                        response=response,
                        message=f"Task completed: {task.description()}",
                        progress=(i + 1) / total,
                        user_message=f"Completed: {simple}",
                    )
                )
            else:
                self._emit(
                    TaskEvent(
                        type="task_failed",
                        task=task,
                        response=response,
                        message=f"Task failed: {response.error}",
                        progress=(i + 1) / total,
                        user_message=f"Failed: {simple}",
                    )
                )
            self.conversation.add_message("assistant", format_task_result(task, response))

        execution.close()
        self._emit(
            TaskEvent(
                type="execution_completed",
                message=f"All tasks completed ({total} total)",
                progress=1.0,
            )
        )
        return execution
