"""
InternMatch
Job and internship marketplace API.

Architecture:
- PostgreSQL: Structured data (users, profiles, jobs, applications, billing, quotas)
- MongoDB: AI outputs (ATS analyses, interview questions, role suggestions)
- ABA PayWay: Subscription payments
- OpenAI-compatible LLM: Resume and interview tooling
"""

__version__ = "1.0.0"
