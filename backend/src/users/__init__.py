"""User management within the current tenant"""
