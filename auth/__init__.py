"""auth/ -- Session and credential authentication for docauth.

Modules, leaves first:
  errors        ErrorKind + AuthError (one exception type, tagged by kind)
  models        Account, AccountRef, Session, Cookie dataclasses
  store         DocumentStore: JSON documents in SQL via SQLAlchemy Core
  tokens        session tokens, bcrypt hashing, cookie helpers
  sessions      SessionManager: create / fetch / destroy / sweep
  users         UserManager: register, sign-in, password change/reset, edit
  mailer        ResetMailer: SMTP delivery of temporary passwords
  dependencies  FastAPI access-control dependencies

Layer rule: auth/ imports only stdlib, third-party libraries, and the
Settings type from core/. It does NOT import from api/.
"""
