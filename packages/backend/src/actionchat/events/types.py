"""Event type constants.

Learn: Centralizing event types as constants prevents typos and
makes it easy to discover every kind of change the activity log records.
"""

# ─── Agents ─────────────────────────────────────────────

AGENT_CREATED = "agent.created"
AGENT_UPDATED = "agent.updated"
AGENT_DELETED = "agent.deleted"
AGENT_SOURCE_LINKED = "agent.source_linked"
AGENT_SOURCE_UNLINKED = "agent.source_unlinked"
AGENT_ACCESS_GRANTED = "agent.access_granted"
AGENT_ACCESS_REVOKED = "agent.access_revoked"

# ─── Sources + tools ────────────────────────────────────

SOURCE_CREATED = "source.created"
SOURCE_UPDATED = "source.updated"
SOURCE_DELETED = "source.deleted"
SOURCE_SYNCED = "source.synced"
SOURCE_CREDENTIALS_SAVED = "source.credentials_saved"
SOURCE_CREDENTIALS_DELETED = "source.credentials_deleted"
TOOL_CREATED = "tool.created"
TOOL_UPDATED = "tool.updated"
TOOL_DELETED = "tool.deleted"

# ─── API keys ───────────────────────────────────────────

API_KEY_CREATED = "api_key.created"
API_KEY_REVOKED = "api_key.revoked"

# ─── Org: settings, team, onboarding ────────────────────

SETTINGS_UPDATED = "settings.updated"
MEMBER_ROLE_CHANGED = "member.role_changed"
MEMBER_JOINED = "member.joined"
MEMBER_ADDED = "member.added"
INVITE_CREATED = "invite.created"
INVITE_REVOKED = "invite.revoked"
ORG_CREATED = "org.created"
ORG_DOMAIN_CHANGED = "org.domain_changed"
ORG_ONBOARDED = "org.onboarded"
