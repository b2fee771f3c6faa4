"""Prompt assembly for single-shot and multi-turn chat completion calls.

The system template carries the store's answer-shaping rules. The rendered
context lists one `[Source N]` header per context block, and the template tells
the model to count those headers for product totals, so the block count from
the context builder is the only number the model may quote.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from storechat.rag.context import format_context_blocks
from storechat.rag.types import ContextBlock, PromptBundle

Message = Dict[str, str]

CLARIFY_PRODUCT_THRESHOLD = 3

DEFAULT_SYSTEM_TEMPLATE = f"""You are a helpful AI assistant for an e-commerce store. Your role is to answer customer questions about products, policies, and store information.

Guidelines:
- Provide accurate, helpful information based on the context provided
- If you don't know something, say so rather than guessing
- Be friendly and professional
- When mentioning products, include relevant details like price, availability, and features
- For policy questions (shipping, returns, etc.), refer to the specific policy information provided
- Always cite your sources when referencing specific information

Product matches:
- Each context source is labelled [Source N]. The number of matching products is the number of product sources in the context. Always use that exact count; never estimate or round it.
- If more than {CLARIFY_PRODUCT_THRESHOLD} products match, do not list them all. State the exact count and ask one clarifying question (for example budget, size, color or use) to narrow the choice.
- If {CLARIFY_PRODUCT_THRESHOLD} or fewer products match, describe each of them.

Use the context provided below to answer questions. If the context doesn't contain relevant information, you can still provide general assistance but indicate that you don't have specific information about that topic."""

FALLBACK_SYSTEM_PROMPT = (
    "You are a helpful AI assistant for an e-commerce website. "
    "Answer customer questions about products, shipping, returns, and other inquiries."
)


@dataclass(frozen=True)
class PromptOptions:
    system_template: str = DEFAULT_SYSTEM_TEMPLATE
    include_context: bool = True
    context_prefix: str = "Context:"
    user_message_prefix: str = "User Question:"


def build_system_prompt(blocks: Sequence[ContextBlock], options: Optional[PromptOptions] = None) -> str:
    """Template plus the rendered context, or the bare template when there is no context."""
    opts = options or PromptOptions()
    prompt = opts.system_template
    if opts.include_context and blocks:
        prompt += f"\n\n{opts.context_prefix}\n{format_context_blocks(blocks)}"
    return prompt


def assemble_prompt(
    user_message: str, blocks: Sequence[ContextBlock] = (), options: Optional[PromptOptions] = None
) -> PromptBundle:
    opts = options or PromptOptions()
    system_prompt = build_system_prompt(blocks, opts)
    user_prompt = f"{opts.user_message_prefix}\n{user_message}"
    return PromptBundle(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        full_prompt=f"{system_prompt}\n\n{user_prompt}",
    )


def assemble_chat_prompt(
    user_message: str, blocks: Sequence[ContextBlock] = (), options: Optional[PromptOptions] = None
) -> Tuple[str, str]:
    """Return (system_message, user_message) for chat models; the user turn is passed through as-is."""
    return build_system_prompt(blocks, options), user_message


def assemble_conversation_prompt(
    history: Sequence[Message], blocks: Sequence[ContextBlock] = (), options: Optional[PromptOptions] = None
) -> Tuple[str, List[Message]]:
    """Return (system_message, [system, *history]) for multi-turn calls."""
    system_message = build_system_prompt(blocks, options)
    messages: List[Message] = [{"role": "system", "content": system_message}]
    messages.extend({"role": m["role"], "content": m["content"]} for m in history)
    return system_message, messages


def build_chat_messages(system_prompt: str, history: Sequence[Message], user_message: str) -> List[Message]:
    """System message, prior turns, then the latest user turn."""
    messages: List[Message] = [{"role": "system", "content": system_prompt}]
    messages.extend({"role": m["role"], "content": m["content"]} for m in history)
    messages.append({"role": "user", "content": user_message})
    return messages


@dataclass(frozen=True)
class StoreInfo:
    """Store details appended to the system prompt (from the site's settings)."""
    site_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    support_emails: List[str] = field(default_factory=list)
    working_hours: Optional[str] = None
    currency: Optional[str] = None
    currency_symbol: Optional[str] = None
    timezone: Optional[str] = None
    policies: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_site_context(cls, ctx: Optional[dict], site_name: Optional[str] = None) -> "StoreInfo":
        ctx = ctx or {}
        contact = ctx.get("contact") or {}
        shop = ctx.get("shop_info") or {}
        return cls(
            site_name=ctx.get("site_name") or site_name,
            contact_email=contact.get("email"),
            contact_phone=contact.get("phone"),
            support_emails=list(ctx.get("support_emails") or []),
            working_hours=ctx.get("working_hours"),
            currency=shop.get("currency"),
            currency_symbol=shop.get("currency_symbol"),
            timezone=shop.get("timezone"),
            policies={k: v for k, v in (ctx.get("policies") or {}).items() if v},
        )


POLICY_LABELS = (
    ("shipping", "Shipping Policy"),
    ("returns", "Returns Policy"),
    ("terms", "Terms of Service"),
    ("privacy", "Privacy Policy"),
)


def append_store_info(prompt: str, info: Optional[StoreInfo]) -> str:
    if info is None:
        return prompt

    lines: List[str] = []
    if info.site_name:
        lines.append(f"Store Name: {info.site_name}")
    contact = [f"Email: {info.contact_email}"] if info.contact_email else []
    if info.contact_phone:
        contact.append(f"Phone: {info.contact_phone}")
    if contact:
        lines.append(f"Contact: {', '.join(contact)}")
    if info.support_emails:
        lines.append(f"Support Emails: {', '.join(info.support_emails)}")
    if info.working_hours:
        lines.append(f"Working Hours: {info.working_hours}")
    shop = []
    if info.currency:
        shop.append(f"Currency: {info.currency}")
    if info.currency_symbol:
        shop.append(f"Currency Symbol: {info.currency_symbol}")
    if info.timezone:
        shop.append(f"Timezone: {info.timezone}")
    if shop:
        lines.append(f"Shop Info: {', '.join(shop)}")
    policies = [f"{label}: {info.policies[key]}" for key, label in POLICY_LABELS if info.policies.get(key)]
    if policies:
        lines.append(f"Policies: {' | '.join(policies)}")

    if not lines:
        return prompt
    return prompt + "\n\nStore Information:\n" + "\n".join(lines)
