"""Prompt templates for the classification and report extraction calls."""

from __future__ import annotations

CLASSIFICATION_SYSTEM_PROMPT = """\
You classify one web article that a news alert for "{topic}" pointed at.

ORIGINAL REPORT (category "original-report"):
- CVE detail pages (nvd.nist.gov, cve.org)
- Vendor security advisories
- Researcher disclosures written in first person ("We discovered...", "I found...")
- GitHub security advisories, government advisories

REPOST (category "repost"):
- News coverage, blog posts or aggregator pages discussing someone else's finding
- Set "referenced_url" to the most authoritative link to the original report
  ("Read more", "Original report", "Advisory", researcher blog, CVE page).
- If no original source is linked, use category "not-relevant".

NOT RELEVANT (category "not-relevant"):
- Anything not about {topic}: marketing, product demos, unrelated news.

Answer with a single JSON object and nothing else:
{{
  "category": "original-report" | "repost" | "not-relevant",
  "referenced_url": "<absolute URL or null>",
  "confidence": <number between 0 and 1>,
  "brief_description": "<one sentence>"
}}
"""

REPORT_EXTRACTION_SYSTEM_PROMPT = """\
Summarize this security report for a catalog about "{topic}".

Decide whether it is specific to that topic (isDomainSpecific):
- true for prompt injection, jailbreaks and safety bypasses, LLM memory hijacking,
  agent system exploits
- false for general malware that mentions AI, traditional web vulnerabilities,
  business news about AI companies

Be concise. Focus on the vulnerability, not the article structure.

Answer with a single JSON object and nothing else:
{{
  "title": "<short report title>",
  "summary": "<2-3 sentences>",
  "severity": "low" | "medium" | "high" | "critical",
  "isDomainSpecific": true | false,
  "discoveryDate": "<YYYY-MM-DD or null>",
  "canonicalId": "<CVE or advisory id, or null>",
  "affectedSystems": ["<product or system>", ...]
}}
"""


def build_classification_prompt(
    *,
    topic: str,
    title: str,
    url: str,
    description: str,
    content: str,
) -> str:
    return (
        CLASSIFICATION_SYSTEM_PROMPT.format(topic=topic)
        + "\n--- ARTICLE ---\n"
        + f"Title: {title}\n"
        + f"URL: {url}\n"
        + f"Alert snippet: {description}\n\n"
        + content
    )


def build_report_prompt(*, topic: str, url: str, content: str) -> str:
    return (
        REPORT_EXTRACTION_SYSTEM_PROMPT.format(topic=topic)
        + "\n--- REPORT ---\n"
        + f"URL: {url}\n\n"
        + content
    )
