"""Helper functions for creating mocked external services."""

from typing import Any, Dict, List, Optional
from unittest.mock import Mock


def create_mock_supabase(return_data: Optional[Any] = None):
    """
    Create a mocked Supabase client with chainable query builder.

    Args:
        return_data: Data to return from execute() call

    Returns:
        Mock Supabase client with chainable methods
    """
    mock = Mock()

    # Make all query builder methods return the mock itself (chainable)
    mock.table.return_value = mock
    mock.rpc.return_value = mock
    mock.select.return_value = mock
    mock.eq.return_value = mock
    mock.neq.return_value = mock
    mock.in_.return_value = mock
    mock.is_.return_value = mock
    mock.lt.return_value = mock
    mock.lte.return_value = mock
    mock.gte.return_value = mock
    mock.order.return_value = mock
    mock.limit.return_value = mock
    mock.insert.return_value = mock
    mock.update.return_value = mock
    mock.upsert.return_value = mock
    mock.delete.return_value = mock
    mock.not_ = mock

    # execute() returns mock response with data
    mock_response = Mock()
    mock_response.data = return_data if return_data is not None else []
    mock.execute.return_value = mock_response

    return mock


def create_mock_channel(delivered: bool = True, raise_error: Optional[Exception] = None):
    """
    Create a mocked notification channel sender.

    Args:
        delivered: Value returned from send()
        raise_error: Exception raised from send() instead

    Returns:
        Mock with a send(user_id, context) method
    """
    channel = Mock()
    if raise_error:
        channel.send.side_effect = raise_error
    else:
        channel.send.return_value = delivered
    return channel


def create_mock_schools(
    city_grades: Optional[Dict[str, str]] = None,
    district_id: Optional[str] = None,
    near_top_school: bool = True,
    raise_error: Optional[Exception] = None,
):
    """Create a mocked school ratings lookup."""
    schools = Mock()
    city_grades = city_grades or {}

    if raise_error:
        schools.get_district_grade_for_city.side_effect = raise_error
        schools.get_district_for_point.side_effect = raise_error
        schools.property_near_top_school.side_effect = raise_error
        return schools

    schools.get_district_grade_for_city.side_effect = lambda city: (
        {"grade": city_grades[city]} if city in city_grades else None
    )
    schools.get_district_for_point.return_value = (
        {"id": district_id} if district_id is not None else None
    )
    schools.property_near_top_school.return_value = near_top_school
    return schools


def table_calls(mock_client: Mock) -> List[str]:
    """Names of the tables a mocked client was queried on, in order."""
    return [c.args[0] for c in mock_client.table.call_args_list]
