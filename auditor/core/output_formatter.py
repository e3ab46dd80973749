"""
Output Formatter
================
Renders an EnhancedReply as Markdown for hosts that display text.

STRICT DETERMINISM CONTRACT:
  - This module NEVER calls the judge.
  - This module NEVER reads environment variables or session storage.
  - Given the same reply, it ALWAYS returns the exact same string.

Layout (sections are skipped when the reply has no such block):

    ## Audit Loop {current_loop}: {STATUS}
    Score: {score}% (threshold {threshold}%) → {reason}
    {completion message}

    ### Summary
    ### Critical Issues        numbered, "{path}:{line} {description} → {resolution}"
    ### Next Steps             numbered, "[{PRIORITY}] {action}"
    ### Loop Progress          scores joined with ARROW
    ### Termination            category, reason, recommendations
    ### Judge Error            only when the review is a fallback
"""
from typing import List

from auditor.models.reply import EnhancedReply

# U+2192 RIGHTWARDS ARROW, shared by every line that shows a transition.
ARROW = "\u2192"

STATUS_COMPLETE = "COMPLETE"
STATUS_STOPPED = "STOPPED"
STATUS_IN_PROGRESS = "IN PROGRESS"


def _score(value) -> str:
    return "n/a" if value is None else f"{value:g}%"


def format_status_line(reply: EnhancedReply) -> str:
    """
    Header line for a reply.

    COMPLETE when the evaluator accepted, STOPPED when the loop ended
    without acceptance, IN PROGRESS otherwise.
    """
    status = reply.completion_status
    loop = status.current_loop if status is not None else reply.thought_number
    if status is not None and status.is_complete:
        label = STATUS_COMPLETE
    elif not reply.next_thought_needed:
        label = STATUS_STOPPED
    else:
        label = STATUS_IN_PROGRESS
    return f"## Audit Loop {loop}: {label}"


def format_completion(reply: EnhancedReply) -> List[str]:
    status = reply.completion_status
    if status is None:
        return []
    lines = [f"Score: {_score(status.score)} (threshold {status.threshold}%) {ARROW} {status.reason}"]
    if status.message:
        lines.append(status.message)
    return lines


def format_feedback(reply: EnhancedReply) -> List[str]:
    feedback = reply.feedback
    if feedback is None:
        return []

    lines = ["", "### Summary", feedback.summary]

    if feedback.critical_issues:
        lines += ["", "### Critical Issues"]
        for i, issue in enumerate(feedback.critical_issues, start=1):
            lines.append(f"{i}. {issue.path}:{issue.line} {issue.description} {ARROW} {issue.resolution}")

    if feedback.next_steps:
        lines += ["", "### Next Steps"]
        for step in feedback.next_steps:
            lines.append(f"{step.step}. [{step.priority.upper()}] {step.action}")
    return lines


def format_loop_info(reply: EnhancedReply) -> List[str]:
    info = reply.loop_info
    if info is None:
        return []
    progression = f" {ARROW} ".join(f"{s:g}" for s in info.score_progression) or "none"
    lines = [
        "",
        "### Loop Progress",
        f"Scores: {progression}",
        f"Loops remaining: {info.loops_remaining} of {info.hard_cap}",
        f"Average improvement: {info.average_improvement:+g}",
    ]
    if info.stagnation_detected:
        lines.append("Stagnation detected")
    return lines


def format_termination(reply: EnhancedReply) -> List[str]:
    info = reply.termination_info
    if info is None:
        return []
    lines = ["", "### Termination", f"Category: {info.category}", f"Reason: {info.reason}"]
    for rec in info.recommendations:
        lines.append(f"- {rec}")
    return lines


def format_error(reply: EnhancedReply) -> List[str]:
    if not reply.error:
        return []
    return ["", "### Judge Error", f"{reply.error.get('type', 'Error')}: {reply.error.get('message', '')}"]


def format_reply(reply: EnhancedReply) -> str:
    """
    Render the full Markdown view of a reply.

    Parameters
    ----------
    reply : EnhancedReply
        Reply produced by the convergence controller.

    Returns
    -------
    str
        Markdown text without a trailing newline.
    """
    lines = [format_status_line(reply)]
    lines += format_completion(reply)
    lines += format_feedback(reply)
    lines += format_loop_info(reply)
    lines += format_termination(reply)
    lines += format_error(reply)
    return "\n".join(lines)
