"""Helpers to extract structured data from Responses API output."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class FunctionCall:
	"""A tool invocation requested by the model."""

	call_id: str
	name: str
	arguments: str

	def parsed_arguments(self) -> Dict[str, Any]:
		try:
			args = json.loads(self.arguments or "{}")
		except ValueError:
			logger.warning("Tool %s sent malformed arguments: %r", self.name, self.arguments)
			return {}
		return args if isinstance(args, dict) else {}

	def as_input(self) -> Dict[str, Any]:
		return {
			"type": "function_call",
			"call_id": self.call_id,
			"name": self.name,
			"arguments": self.arguments,
		}


def parse_function_calls(response: Any) -> List[FunctionCall]:
	"""Return every function_call item in the response output."""
	calls: List[FunctionCall] = []
	for item in getattr(response, "output", None) or []:
		if getattr(item, "type", None) != "function_call":
			continue
		calls.append(
			FunctionCall(
				call_id=getattr(item, "call_id", "") or "",
				name=getattr(item, "name", "") or "",
				arguments=getattr(item, "arguments", "{}") or "{}",
			)
		)
	return calls


def function_call_output(call_id: str, output: str) -> Dict[str, Any]:
	return {"type": "function_call_output", "call_id": call_id, "output": output}


def extract_text(response: Any) -> str:
	"""Extract the concatenated output_text of the response."""
	texts: List[str] = []
	for item in getattr(response, "output", None) or []:
		if getattr(item, "type", None) != "message":
			continue
		for content in getattr(item, "content", None) or []:
			if getattr(content, "type", None) == "output_text":
				texts.append(getattr(content, "text", "") or "")
	if texts:
		return "".join(texts)
	return getattr(response, "output_text", "") or ""


def extract_usage(response: Any) -> Dict[str, Optional[int]]:
	"""Return token usage if present."""
	usage = getattr(response, "usage", None)
	return {
		"input_tokens": getattr(usage, "input_tokens", None) if usage else None,
		"output_tokens": getattr(usage, "output_tokens", None) if usage else None,
	}
