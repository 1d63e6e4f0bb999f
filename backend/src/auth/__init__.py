"""Authentication: JWT tokens, password hashing, roles and the request principal"""
