"""Operator helpers around parallel relabel runs."""
