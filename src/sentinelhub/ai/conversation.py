"""Conversation sessions over scan results.

A session is opened once per pipeline run with the run's scan results as
context. ``start_session`` returns an overview message plus suggested
questions; ``chat`` answers follow-ups with the last few turns as context.

When the text generator is unavailable the service still answers: session
overviews fall back to a structured summary and chat turns to a fixed
apology with generic suggestions.
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sentinelhub.ai.generator import TextGenerationError, TextGenerator
from sentinelhub.findings import (
    derive_risk_level,
    findings_frame,
    iter_findings,
    key_findings,
    normalize_severity,
    severity_histogram,
    total_findings,
)

logger = logging.getLogger(__name__)

MAX_HISTORY = 20
TRIMMED_HISTORY = 16
CONTEXT_TURNS = 6

_BASE_QUESTIONS = [
    "What are the most critical security issues I need to fix immediately?",
    "How do I implement the recommended security fixes?",
    "What compliance requirements am I currently violating?",
    "Can you explain these vulnerabilities in business terms?",
    "What is the potential impact if these issues are not addressed?",
]
_CATEGORY_QUESTIONS = {
    "secrets": "How do I properly manage and secure these exposed secrets?",
    "misconfigurations": "What security configurations should I prioritize?",
    "permissions": "How do I implement proper access controls?",
}
_FOLLOW_UPS = [
    "Can you provide more specific implementation details?",
    "What tools would you recommend for this remediation?",
    "How urgent is addressing this issue?",
    "Are there alternative approaches I should consider?",
]
_COMPLIANCE_HINTS = [
    (("gdpr", "privacy"), "GDPR compliance considerations apply"),
    (("pci", "payment"), "PCI-DSS requirements relevant"),
    (("hipaa", "health"), "HIPAA privacy and security rules apply"),
]
_STEP_LINE = re.compile(r"^(\d+\.|[-*]|\w+:)")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ConversationSession:
    """One conversation bound to one scan result."""

    session_id: str
    scan_results: dict[str, Any]
    history: list[dict[str, str]] = field(default_factory=list)
    created_at: str = field(default_factory=_now)

    def add(self, role: str, content: str) -> None:
        self.history.append({"role": role, "content": content, "timestamp": _now()})
        if len(self.history) > MAX_HISTORY:
            self.history = self.history[-TRIMMED_HISTORY:]


def build_scan_summary(scan_results: dict[str, Any] | None) -> str:
    """Plain-text digest of a scan for prompting."""
    if not scan_results:
        return "No scan results available for analysis."

    frame = findings_frame(scan_results)
    histogram = severity_histogram(frame)
    risk = (scan_results.get("summary") or {}).get("riskLevel") or derive_risk_level(histogram)

    parts = [
        "SECURITY SCAN ANALYSIS:",
        f"Scan Type: {scan_results.get('type') or 'Security Assessment'}",
        f"Total Findings: {len(frame)}",
        f"Critical Issues: {histogram['critical']}",
        f"High Severity: {histogram['high']}",
        f"Medium Severity: {histogram['medium']}",
        f"Risk Level: {risk}",
    ]
    if not frame.empty:
        parts.append("\nFINDING CATEGORIES:")
        for category, count in frame["category"].value_counts().items():
            parts.append(f"- {category}: {count} issues")
    highlights = key_findings(scan_results)
    if highlights:
        parts.append("\nKEY SECURITY ISSUES:")
        parts.extend(f"- {line}" for line in highlights)
    return "\n".join(parts)


def suggested_questions(scan_results: dict[str, Any]) -> list[str]:
    findings = scan_results.get("findings") or {}
    questions = list(_BASE_QUESTIONS)
    for category, question in _CATEGORY_QUESTIONS.items():
        if findings.get(category):
            questions.append(question)
    return questions[:6]


def quick_actions(scan_results: dict[str, Any]) -> list[dict[str, str]]:
    findings = scan_results.get("findings") or {}
    actions = []
    if any(normalize_severity(item.get("severity")) == "critical" for _, item in iter_findings(scan_results)):
        actions.append({
            "title": "Address Critical Issues",
            "description": "Fix immediate security risks",
            "priority": "urgent",
            "category": "security",
        })
    if findings.get("secrets"):
        actions.append({
            "title": "Secure Exposed Credentials",
            "description": "Remove and rotate compromised secrets",
            "priority": "high",
            "category": "secrets",
        })
    if findings.get("vulnerabilities"):
        actions.append({
            "title": "Patch Vulnerabilities",
            "description": "Apply security updates and fixes",
            "priority": "high",
            "category": "vulnerabilities",
        })
    actions.append({
        "title": "Create Remediation Plan",
        "description": "Get detailed step-by-step fix instructions",
        "priority": "medium",
        "category": "planning",
    })
    return actions


def related_findings(scan_results: dict[str, Any], message: str, limit: int = 3) -> list[dict[str, Any]]:
    """Findings sharing words (longer than 3 chars) with ``message``, best first."""
    keywords = [word for word in message.lower().split() if len(word) > 3]
    if not keywords:
        return []

    scored = []
    for category, item in iter_findings(scan_results):
        text = f"{item.get('message', '')} {item.get('type', '')}".lower()
        score = sum(1 for keyword in keywords if keyword in text)
        if score:
            scored.append({**item, "category": category, "relevance_score": score})

    scored.sort(key=lambda f: f["relevance_score"], reverse=True)
    return scored[:limit]


def actionable_steps(response: str, limit: int = 5) -> list[str]:
    steps = []
    for line in response.splitlines():
        stripped = line.strip()
        if len(stripped) > 10 and _STEP_LINE.match(stripped):
            steps.append(stripped)
    return steps[:limit]


def follow_up_questions(response: str) -> list[str]:
    questions = list(_FOLLOW_UPS)
    lowered = response.lower()
    if "encrypt" in lowered:
        questions.insert(0, "What encryption standards should I implement?")
    if "access" in lowered:
        questions.insert(0, "How should I configure access controls?")
    return questions[:4]


def compliance_notes(message: str) -> list[str]:
    lowered = message.lower()
    return [note for keywords, note in _COMPLIANCE_HINTS if any(k in lowered for k in keywords)]


class ConversationService:
    """In-memory conversation sessions backed by a TextGenerator.

    Args:
        generator: Text generator used for overviews and answers
        overview_tokens: Token budget for the opening overview
        chat_tokens: Token budget for each chat answer
    """

    def __init__(
        self,
        generator: TextGenerator,
        overview_tokens: int = 250,
        chat_tokens: int = 200,
    ) -> None:
        self.generator = generator
        self.overview_tokens = overview_tokens
        self.chat_tokens = chat_tokens
        self._sessions: dict[str, ConversationSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get_session(self, session_id: str) -> ConversationSession | None:
        return self._sessions.get(session_id)

    def close(self, session_id: str) -> bool:
        """Drop a session and its scan context. False if it was not open."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        logger.debug("Conversation session %s closed", session_id)
        return True

    async def start_session(self, scan_results: dict[str, Any]) -> dict[str, Any]:
        """Open a session and produce its overview.

        Raises:
            ValueError: If ``scan_results`` is not a scan result mapping
        """
        if not isinstance(scan_results, dict):
            raise ValueError("Conversation requires scan results as a mapping")

        session = ConversationSession(session_id=f"sess_{uuid.uuid4().hex[:12]}", scan_results=scan_results)
        self._sessions[session.session_id] = session
        summary = build_scan_summary(scan_results)

        overview_type = "security_overview"
        try:
            message = await self.generator.generate(
                self._overview_prompt(summary),
                max_tokens=self.overview_tokens,
                temperature=0.6,
            )
        except TextGenerationError as e:
            logger.warning("AI overview unavailable for %s, using structured overview: %s", session.session_id, e)
            message = self._structured_overview(scan_results)
            overview_type = "structured_overview"

        session.add("assistant", message)
        logger.info("Conversation session %s opened (%s)", session.session_id, overview_type)
        return {
            "session_id": session.session_id,
            "message": message,
            "type": overview_type,
            "scan_summary": summary,
            "quick_actions": quick_actions(scan_results),
            "suggested_questions": suggested_questions(scan_results),
            "can_chat": True,
            "timestamp": _now(),
        }

    async def chat(self, session_id: str, message: str) -> dict[str, Any]:
        """Answer one user message within a session.

        Raises:
            KeyError: If the session does not exist
        """
        session = self._sessions[session_id]
        prompt = self._chat_prompt(session, message)

        try:
            answer = await self.generator.generate(prompt, max_tokens=self.chat_tokens, temperature=0.7)
        except TextGenerationError as e:
            logger.warning("Chat generation failed for %s: %s", session_id, e)
            return self.fallback_response(session_id)

        session.add("user", message)
        session.add("assistant", answer)
        return {
            "message": answer,
            "type": "chat_response",
            "session_id": session_id,
            "related_findings": related_findings(session.scan_results, message),
            "actionable_steps": actionable_steps(answer),
            "follow_up_questions": follow_up_questions(answer),
            "compliance_notes": compliance_notes(message),
            "timestamp": _now(),
        }

    @staticmethod
    def fallback_response(session_id: str | None) -> dict[str, Any]:
        """Answer used when no session exists or generation fails."""
        return {
            "message": (
                "I'm having trouble answering right now, but I can still help with general "
                "security guidance. Could you rephrase the question or ask about a specific finding?"
            ),
            "type": "fallback_response",
            "session_id": session_id,
            "is_error": True,
            "suggested_questions": [
                "What should I prioritize in my security fixes?",
                "How do I address the critical vulnerabilities?",
                "What are the compliance implications of these findings?",
            ],
            "timestamp": _now(),
        }

    def export(self, session_id: str) -> dict[str, Any]:
        """Session transcript for reporting."""
        session = self._sessions[session_id]
        return {
            "session_id": session.session_id,
            "created_at": session.created_at,
            "scan_context": build_scan_summary(session.scan_results),
            "conversation": list(session.history),
            "message_count": len(session.history),
        }

    @staticmethod
    def _overview_prompt(summary: str) -> str:
        return (
            "You're reviewing scan results with a developer.\n\n"
            f"{summary}\n\n"
            "Give a conversational overview:\n"
            "- Start with a quick assessment (good, bad, critical?)\n"
            "- Mention the top 2-3 things that need attention\n"
            "- Keep it natural, not a formal report\n\n"
            "YOUR RESPONSE:"
        )

    @staticmethod
    def _chat_prompt(session: ConversationSession, message: str) -> str:
        recent = session.history[-CONTEXT_TURNS:]
        context = "\n".join(f"{turn['role'].upper()}: {turn['content']}" for turn in recent)
        return (
            "You are a knowledgeable cybersecurity expert talking with a developer.\n\n"
            f"SCAN RESULTS CONTEXT:\n{build_scan_summary(session.scan_results)}\n\n"
            f"RECENT CONVERSATION:\n{context or 'This is the start of the security consultation.'}\n\n"
            f'USER QUESTION: "{message}"\n\n'
            "If the question is unrelated to security or development, politely redirect. "
            "Reference specific findings when relevant.\n\n"
            "YOUR RESPONSE:"
        )

    @staticmethod
    def _structured_overview(scan_results: dict[str, Any]) -> str:
        histogram = severity_histogram(findings_frame(scan_results))
        risk = (scan_results.get("summary") or {}).get("riskLevel") or derive_risk_level(histogram)
        return (
            "Security assessment completed.\n\n"
            "SUMMARY:\n"
            f"- Total security findings: {total_findings(scan_results)}\n"
            f"- Critical issues requiring immediate attention: {histogram['critical']}\n"
            f"- High severity vulnerabilities: {histogram['high']}\n"
            f"- Overall risk level: {risk}\n\n"
            "Ask me about any of these findings to build a remediation plan."
        )
