"""Operator模块"""
from .utils import observation_from_pod, replica_state_from_pod, retry_on_error
