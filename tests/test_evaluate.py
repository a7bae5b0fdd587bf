#!/usr/bin/env python3

# pylint: disable=redefined-outer-name
import pytest

import check_mysql
from check_mysql import OK, WARNING, CRITICAL, ReplicationStatus, ServerSnapshot


def make_config(**overrides):
    values = dict(check_mysql.DEFAULTS, username='monitor', password='secret')
    values.update(overrides)
    return check_mysql.Configuration(**values)


def make_replication(**fields):
    values = dict((field, None) for field in check_mysql.REPLICATION_FIELDS)
    values.update(fields)
    return ReplicationStatus(**values)


def make_snapshot(uptime=86400, threads_connected=10, max_connections=100, max_used_connections=20,
                  replication=None):
    return ServerSnapshot(uptime, threads_connected, max_connections, max_used_connections, replication)


def results_by_name(results):
    return dict((result.name, result) for result in results)


@pytest.fixture()
def config():
    return make_config()


@pytest.mark.parametrize("connected, expected", [
    (79, OK),
    (80, WARNING),
    (89, WARNING),
    (90, CRITICAL),
    (150, CRITICAL),
])
def test_active_connections_thresholds(config, connected, expected):
    result = check_mysql.check_active_connections(make_snapshot(threads_connected=connected), config)
    assert result.name == 'mysql-active_connections'
    assert result.status == expected


def test_active_connections_threshold_is_truncated(config):
    # 80 * 151 / 100 = 120.8, truncated to 120
    result = check_mysql.check_active_connections(make_snapshot(threads_connected=120, max_connections=151), config)
    assert result.status == WARNING
    assert result.message == 'High number of active connections - Current: 120 (>= 120)'

    result = check_mysql.check_active_connections(make_snapshot(threads_connected=119, max_connections=151), config)
    assert result.status == OK
    assert result.message == '119 active connections (< 120)'


def test_active_connections_critical_message(config):
    result = check_mysql.check_active_connections(make_snapshot(threads_connected=95), config)
    assert result.message == 'Too many active connections - Current: 95 (>= 90)'


def test_max_used_connections_only_warns(config):
    result = check_mysql.check_max_used_connections(make_snapshot(max_used_connections=100), config)
    assert result.name == 'mysql-max_used_connections'
    assert result.status == WARNING
    assert result.message == 'MySQL server max used connections reached 100 (>= 90)'


def test_max_used_connections_ok(config):
    result = check_mysql.check_max_used_connections(make_snapshot(max_used_connections=89), config)
    assert result.status == OK
    assert result.message == 'MySQL server max used connections is 89 (< 90)'


def test_no_replication_results_without_replication(config):
    results = check_mysql.evaluate(make_snapshot(), config)
    assert [result.name for result in results] == ['mysql-active_connections', 'mysql-max_used_connections']


def test_one_result_per_present_replication_field(config):
    replication = make_replication(io_running='Yes', seconds_behind=0)
    results = check_mysql.check_replication(replication, config)
    assert [result.name for result in results] == ['mysql-slave-io_thread', 'mysql-slave-lag']


def test_healthy_replica(config):
    replication = make_replication(io_running='Yes', sql_running='yes', last_errno=0, seconds_behind=3)
    results = results_by_name(check_mysql.evaluate(make_snapshot(replication=replication), config))
    assert len(results) == 6
    assert all(result.status == OK for result in results.values())
    assert results['mysql-slave-io_thread'].message == 'MySQL slave IO thread is running'
    assert results['mysql-slave-sql_thread'].message == 'MySQL slave SQL thread is running'
    assert results['mysql-slave-last_errno'].message == 'MySQL slave replication has no errors'
    assert results['mysql-slave-lag'].message == 'MySQL slave replication is in sync'


def test_stopped_threads_are_critical(config):
    replication = make_replication(io_running='Connecting', last_io_errno=2003,
                                   last_io_error="Can't connect to master",
                                   sql_running='No', last_sql_errno=1062, last_sql_error='Duplicate entry')
    results = results_by_name(check_mysql.check_replication(replication, config))
    io_thread = results['mysql-slave-io_thread']
    sql_thread = results['mysql-slave-sql_thread']
    assert io_thread.status == CRITICAL
    assert io_thread.message == "MySQL slave IO thread not running (Errno: 2003, Error: Can't connect to master)"
    assert sql_thread.status == CRITICAL
    assert sql_thread.message == 'MySQL slave SQL thread not running (Errno: 1062, Error: Duplicate entry)'


def test_last_errno_is_critical(config):
    replication = make_replication(last_errno=1032, last_error="Can't find record")
    result, = check_mysql.check_replication(replication, config)
    assert result.status == CRITICAL
    assert result.message == "MySQL slave replication has failed with 1032 error (Can't find record)"


@pytest.mark.parametrize("lag, expected", [
    (0, OK),
    (59, OK),
    (60, WARNING),
    (119, WARNING),
    (120, CRITICAL),
])
def test_slave_lag_thresholds(config, lag, expected):
    result, = check_mysql.check_replication(make_replication(seconds_behind=lag), config)
    assert result.status == expected


def test_slave_lag_message(config):
    result, = check_mysql.check_replication(make_replication(seconds_behind=120), config)
    assert result.message == 'MySQL slave replication is 120s behind master (>= 120s)'


def test_overall_ok(config):
    snapshot = make_snapshot()
    results = check_mysql.evaluate(snapshot, config)
    assert check_mysql.overall_status(results, snapshot, config) == (OK, 'MySQL server is running')


def test_overall_downgraded_after_restart(config):
    snapshot = make_snapshot(uptime=100)
    results = check_mysql.evaluate(snapshot, config)
    assert all(result.status == OK for result in results)
    assert check_mysql.overall_status(results, snapshot, config) == (WARNING, 'MySQL server restarted 100s ago')


def test_overall_uptime_floor_is_inclusive():
    config = make_config(uptime=300)
    snapshot = make_snapshot(uptime=300)
    status, _ = check_mysql.overall_status([], snapshot, config)
    assert status == WARNING


def test_overall_reports_worst_result(config):
    replication = make_replication(seconds_behind=200)
    snapshot = make_snapshot(uptime=10, threads_connected=85, replication=replication)
    results = check_mysql.evaluate(snapshot, config)
    status, message = check_mysql.overall_status(results, snapshot, config)
    assert status == CRITICAL
    assert message == ('MySQL server restarted 10s ago; 2 check(s) not OK: '
                       'mysql-active_connections WARNING, mysql-slave-lag CRITICAL')


def test_worst_status_ranks_unknown_below_critical():
    assert check_mysql.worst_status([]) == OK
    assert check_mysql.worst_status([OK, check_mysql.UNKNOWN, WARNING]) == check_mysql.UNKNOWN
    assert check_mysql.worst_status([check_mysql.UNKNOWN, CRITICAL]) == CRITICAL
