"""
tests/unit/test_confirmation_policy.py — Confirmation Policy Tests
"""

from __future__ import annotations

import pytest

from safety.confirmation_policy import (
    NoConfirmationPolicy,
    PromptPrecheckPolicy,
    ReplyDrivenPolicy,
    create_policy,
)


class TestPromptPrecheckPolicy:
    def test_keyword_gates_prompt(self):
        policy = PromptPrecheckPolicy(["delete", "drop"])
        pending = policy.before_send("delete the staging environment")
        assert pending is not None
        assert pending.resume_text == "delete the staging environment"
        assert pending.origin_prompt == "delete the staging environment"
        assert "delete" in pending.reason

    def test_whole_word_only(self):
        policy = PromptPrecheckPolicy(["drop"])
        assert policy.before_send("add a dropdown to the form") is None
        assert policy.matched_keyword("Drop the table") == "drop"

    def test_never_gates_replies(self):
        policy = PromptPrecheckPolicy(["delete"])
        assert policy.after_reply("x", "Would you like me to delete it?") is None

    def test_keywords_normalised(self):
        assert PromptPrecheckPolicy([" Delete ", "", "WIPE"]).keywords == ["delete", "wipe"]


class TestReplyDrivenPolicy:
    def test_consent_question_gates(self):
        pending = ReplyDrivenPolicy().after_reply(
            "clean up", "I found 3 stale files. Would you like me to delete the file?"
        )
        assert pending is not None
        assert pending.action == "delete the file"
        assert pending.resume_text == "Yes, please delete the file"

    def test_plain_reply_passes(self):
        assert ReplyDrivenPolicy().after_reply("p", "Here is your plan.") is None

    def test_never_gates_prompts(self):
        assert ReplyDrivenPolicy().before_send("delete everything") is None

    def test_ids_are_unique(self):
        policy = ReplyDrivenPolicy()
        a = policy.after_reply("p", "Shall I send it?")
        b = policy.after_reply("p", "Shall I send it?")
        assert a.id != b.id


class TestCreatePolicy:
    def test_names(self):
        assert isinstance(create_policy("reply"), ReplyDrivenPolicy)
        assert isinstance(create_policy("PRECHECK", ["x"]), PromptPrecheckPolicy)
        assert isinstance(create_policy("off"), NoConfirmationPolicy)

    def test_unknown(self):
        with pytest.raises(ValueError):
            create_policy("both")

    def test_off_never_gates(self):
        policy = create_policy("off")
        assert policy.before_send("delete all") is None
        assert policy.after_reply("p", "Would you like me to delete it?") is None
