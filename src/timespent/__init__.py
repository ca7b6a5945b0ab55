"""
Time Spent

Pull the week's work out of Google Calendar, GitLab, Monday.com, the TODO
service and Granola, and summarize where the time went.

Modules:
- config: Settings read once from the environment
- credential_store: Google OAuth token file, client secrets, Granola app token
- oauth_flow: Interactive Google authorization (local callback or pasted code)
- *_fetcher: One fetcher per external service
- normalizer: Best-effort conversion of raw records into NormalizedEntry
- presenter: Console formatting
- aggregator: Combine every source and send it to the LLM
"""

__version__ = "0.1.0"
