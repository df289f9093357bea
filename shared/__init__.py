"""Shared configuration, logging, persistence and credential services"""
