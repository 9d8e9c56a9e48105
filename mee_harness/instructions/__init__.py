"""Instruction builders."""
