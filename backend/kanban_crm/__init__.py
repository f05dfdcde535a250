"""Kanban board service for the sales CRM."""
