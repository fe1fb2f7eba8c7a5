"""
Editing Agent - fast, tool-based edits for simple conversational requests.

Instead of regenerating the whole document, the model is shown the HTML and
a fixed catalog of five literal edit tools. Whatever tools it calls are
executed here, in order, as exact find/replace operations. Unrelated parts of
the document cannot drift because they are never rewritten.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from flyer_engine.logging_config import logger
from flyer_engine.services.customization_prompts import build_tool_editor_system_prompt
from flyer_engine.services.field_merge import CustomizationValidationError
from flyer_engine.services.provider_gateway import ProviderGateway
from flyer_engine.tools.edit_tools import (
    EditOperation,
    describe_operation,
    execute_operations,
    parse_operation,
    tool_definitions,
)

NO_CHANGES_MESSAGE = "No changes detected"


@dataclass
class EditResult:
    """Outcome of one tool-based edit"""
    html: str
    applied_ops: List[EditOperation] = field(default_factory=list)

    @property
    def no_changes(self) -> bool:
        """True when the model invoked no tools; a valid outcome, not a failure."""
        return not self.applied_ops

    @property
    def message(self) -> Optional[str]:
        return NO_CHANGES_MESSAGE if self.no_changes else None

    def changes(self) -> List[Dict[str, Any]]:
        return [describe_operation(op) for op in self.applied_ops]


class EditingAgent:
    """Tool-call edit engine"""

    def __init__(self, gateway: ProviderGateway):
        self.gateway = gateway
        self.tools = tool_definitions()

    async def edit(self, html: str, user_prompt: str) -> EditResult:
        """
        Edit HTML based on a user instruction using the tool catalog.

        Args:
            html: Current HTML content
            user_prompt: The user's edit instruction

        Returns:
            EditResult with the final HTML and the operations applied.
            ProviderError propagates when the provider call fails.
        """
        if not html or not html.strip() or not user_prompt or not user_prompt.strip():
            raise CustomizationValidationError("HTML content and prompt are required")

        logger.info("EditingAgent: Starting edit", instruction=user_prompt[:50])

        invocations = await self.gateway.invoke_tools(
            system_prompt=build_tool_editor_system_prompt(html),
            user_prompt=user_prompt,
            tools=self.tools,
        )

        operations: List[EditOperation] = []
        for invocation in invocations:
            operation = parse_operation(invocation.name, invocation.input)
            if operation is not None:
                operations.append(operation)

        if not operations:
            logger.info("EditingAgent: No tools called", invocations=len(invocations))
            return EditResult(html=html)

        edited = execute_operations(html, operations)
        logger.info(
            "EditingAgent: Applied edits",
            operations=[describe_operation(op)["tool"] for op in operations],
            changed=edited != html,
        )
        return EditResult(html=edited, applied_ops=operations)
