"""Workflow services -- revision lifecycle coordination and pending-approval queries."""
