"""Tests for prompt assembly."""

from storechat.rag.context import build_context_blocks
from storechat.rag.prompts import (
    DEFAULT_SYSTEM_TEMPLATE,
    PromptOptions,
    StoreInfo,
    append_store_info,
    assemble_chat_prompt,
    assemble_conversation_prompt,
    assemble_prompt,
    build_chat_messages,
)
from tests.conftest import make_chunk


class TestAssemblePrompt:

    def test_without_blocks_has_no_context_header(self):
        bundle = assemble_prompt("Do you sell lamps?", [])

        assert bundle.system_prompt == DEFAULT_SYSTEM_TEMPLATE
        assert "Context:" not in bundle.system_prompt
        assert bundle.user_prompt == "User Question:\nDo you sell lamps?"
        assert bundle.full_prompt == bundle.system_prompt + "\n\n" + bundle.user_prompt

    def test_with_blocks_appends_context(self):
        blocks = build_context_blocks([make_chunk("p1", 0.9, product_title="Lamp")])
        bundle = assemble_prompt("lamps?", blocks)

        assert bundle.system_prompt.startswith(DEFAULT_SYSTEM_TEMPLATE + "\n\nContext:\n[Source 1] Title: Lamp")

    def test_include_context_false(self):
        blocks = build_context_blocks([make_chunk("p1", 0.9)])
        bundle = assemble_prompt("q", blocks, PromptOptions(include_context=False))
        assert bundle.system_prompt == DEFAULT_SYSTEM_TEMPLATE

    def test_custom_prefixes(self):
        blocks = build_context_blocks([make_chunk("p1", 0.9)])
        bundle = assemble_prompt(
            "q", blocks, PromptOptions(system_template="SYS", context_prefix="Facts:", user_message_prefix="Q:")
        )
        assert bundle.system_prompt.startswith("SYS\n\nFacts:\n")
        assert bundle.user_prompt == "Q:\nq"

    def test_template_carries_product_count_rules(self):
        assert "more than 3 products" in DEFAULT_SYSTEM_TEMPLATE
        assert "exact count" in DEFAULT_SYSTEM_TEMPLATE


class TestChatMessages:

    def test_chat_prompt_passes_user_turn_through(self):
        system, user = assemble_chat_prompt("hello", [])
        assert system == DEFAULT_SYSTEM_TEMPLATE
        assert user == "hello"

    def test_conversation_prompt(self):
        history = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]
        system, messages = assemble_conversation_prompt(history, [])

        assert messages[0] == {"role": "system", "content": system}
        assert messages[1:] == history

    def test_build_chat_messages_adds_latest_turn(self):
        messages = build_chat_messages("SYS", [{"role": "user", "content": "a"}], "b")
        assert [m["role"] for m in messages] == ["system", "user", "user"]
        assert messages[-1]["content"] == "b"


class TestStoreInfo:

    def test_appends_section(self):
        info = StoreInfo.from_site_context(
            {
                "contact": {"email": "help@shop.test", "phone": "555-0100"},
                "support_emails": ["a@shop.test", "b@shop.test"],
                "working_hours": "Mon-Fri 9-17",
                "shop_info": {"currency": "EUR", "timezone": "Europe/Berlin"},
                "policies": {"shipping": "https://shop.test/shipping", "returns": ""},
            },
            site_name="Shop",
        )
        prompt = append_store_info("BASE", info)

        assert prompt.startswith("BASE\n\nStore Information:\n")
        assert "Store Name: Shop" in prompt
        assert "Contact: Email: help@shop.test, Phone: 555-0100" in prompt
        assert "Support Emails: a@shop.test, b@shop.test" in prompt
        assert "Shop Info: Currency: EUR, Timezone: Europe/Berlin" in prompt
        assert "Policies: Shipping Policy: https://shop.test/shipping" in prompt
        assert "Returns Policy" not in prompt

    def test_empty_info_leaves_prompt(self):
        assert append_store_info("BASE", StoreInfo()) == "BASE"
        assert append_store_info("BASE", None) == "BASE"
