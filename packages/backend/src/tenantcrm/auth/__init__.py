"""Authentication and authorization.

Session-cookie authentication for users of a tenant organization:
1. Credentials → bcrypt-verified identity (auth.identity, auth.password)
2. Identity → server-side session bound to an http-only cookie (auth.sessions)
3. Every request → fresh identity from the cookie (auth.context)
4. Protected routes → role/permission guards (auth.dependencies)
"""
