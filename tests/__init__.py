"""
relaybot Test Suite
===================

Test Organization
-----------------
- tests/unit/ : Fast unit tests against in-memory fakes (no network)

Testing Philosophy
------------------
- Test observable behaviour of each dispatch-core component
- Fakes over mocks where a protocol exists; ``mocker`` for one-off seams
- Follow AAA pattern: Arrange, Act, Assert
"""
