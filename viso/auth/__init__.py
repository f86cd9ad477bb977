"""
Authentication and authorization for VISO.

- cookies:       request-scoped cookie jar and Supabase session cookie codec
- permissions:   permission codes and the scoped role rule table
- role_override: preview-as-another-role for privileged users
- guard:         per-page access guard and its FastAPI dependencies
- sso:           platform shell login links
"""
