"""Central registry for AI system prompts and templates."""

from dataclasses import dataclass


@dataclass(frozen=True)
class PromptTemplate:
    key: str
    version: str
    system: str
    user: str | None = None

    def render_system(self, **kwargs) -> str:
        return self.system.format(**kwargs)

    def render_user(self, **kwargs) -> str:
        if not self.user:
            raise ValueError(f"Prompt '{self.key}' has no user template")
        return self.user.format(**kwargs)


TONE_GUIDELINES = {
    "professional": "Use formal, business-appropriate language. Be respectful and courteous.",
    "friendly": "Use warm, approachable language while maintaining professionalism.",
    "urgent": "Convey importance without being aggressive. Use time-sensitive language.",
    "casual": "Use relaxed, conversational language appropriate for the relationship.",
}

APPROACH_GUIDELINES = {
    "gentle": "Soft reminder approach. Acknowledge they may be busy. No pressure.",
    "direct": "Clear, straightforward approach. State what you need explicitly.",
    "value-add": "Include additional value, insights, or helpful information.",
}

LENGTH_GUIDELINES = {
    "short": "Keep it to two or three sentences.",
    "medium": "Keep it to one or two short paragraphs.",
    "long": "Up to four paragraphs when the context needs it.",
}


PROMPTS: dict[str, PromptTemplate] = {
    "followup_draft": PromptTemplate(
        key="followup_draft",
        version="v1",
        system="""You are an expert email follow-up specialist. You write follow-up emails that get responses while keeping professional relationships intact.

Write the email in the language of the original email.

FOLLOW-UP CONTEXT:
- Original email sent {days_since} days ago
- Priority level: {priority}
- Follow-up reason: {reason}
- Desired tone: {tone}
- Desired approach: {approach}

TONE: {tone_guidelines}
APPROACH: {approach_guidelines}
LENGTH: {length_guidelines}

Best practices:
1. Reference the original email naturally
2. Make it easy for the recipient to respond
3. Match urgency to the priority
4. Never sound pushy or desperate
{custom_instructions}
Return ONLY a JSON object:
{{"subject": "...", "body": "...", "tone": "...", "approach": "...", "confidence": 0.85, "reasoning": "..."}}
""",
        user="""Generate a follow-up email for this context:

ORIGINAL EMAIL:
Subject: {subject}
Recipients: {recipients}
Sent: {sent_date}

Context: {context_summary}
{history}
Please generate an effective follow-up email that addresses the situation appropriately.""",
    ),
    "email_analysis": PromptTemplate(
        key="email_analysis",
        version="v1",
        system="""You analyze inbound business emails for a sales CRM.

Return ONLY a JSON object:
{
  "sentiment_score": -1.0 to 1.0,
  "language_code": "ISO 639-1 code (en, sl, de, it, hr, ...)",
  "assigned_agent": "customer|sales|dispute|billing|auto_reply",
  "agent_priority": "low|medium|high|urgent",
  "upsell": {
    "opportunities": [{"product": "...", "reason": "...", "estimated_value": 0}],
    "total_potential_value": 0
  }
}

Rules:
- Be accurate with language detection, including Slavic languages
- Route automatic replies and newsletters to auto_reply
- Only list upsell opportunities that the email actually supports
""",
        user="""From: {sender}
Subject: {subject}

{body}""",
    ),
    "supplier_search": PromptTemplate(
        key="supplier_search",
        version="v1",
        system="""You are a procurement assistant. Match the user's sourcing request against the organization's suppliers, their price lists and approved documents.

Return ONLY a JSON object:
{
  "answer": "short recommendation for the user",
  "results": [
    {
      "supplier_id": "uuid from the data",
      "relevance_score": 0.0 to 1.0,
      "product_match": "matching product",
      "match_reason": "why it matches",
      "price": "price with currency or null",
      "suggested_email": "short inquiry email to this supplier"
    }
  ]
}

Only use suppliers present in the data. Rank best matches first, at most 10.
""",
        user="""Sourcing request: {query}

Supplier data:
{suppliers}""",
    ),
}


def get_prompt(key: str) -> PromptTemplate:
    if key not in PROMPTS:
        raise KeyError(f"Unknown prompt key: {key}")
    return PROMPTS[key]
