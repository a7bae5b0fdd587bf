#!/usr/bin/env python3

########################################################################
# check_mysql - A Sensu/Nagios plugin to check MySQL server health
# Copyright (C) 2017 Nagios Enterprises
#
# This program is free software; you can redistribute it and/or
# modify it under the terms of the GNU General Public License
# as published by the Free Software Foundation; either version 2
# of the License, or (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program; if not, write to the Free Software
# Foundation, Inc., 51 Franklin Street, Fifth Floor, Boston, MA  02110-1301, USA.
#
################### check_mysql.py #####################################
# Version    : 1.0.0
# Date       : 10/18/2026
# Maintainer : Nagios Enterprises, LLC
# License    : GPLv2 (LICENSE.md / https://www.gnu.org/licenses/old-licenses/gpl-2.0.html)
########################################################################

import json
import logging
import os
import socket
import sys
from collections import namedtuple
from optparse import OptionParser, OptionGroup

import pymysql

__version__ = '1.0.0'

LOGGER = logging.getLogger(__name__)

CHECK_TAG = 'CheckMySQL'

OK, WARNING, CRITICAL, UNKNOWN = 0, 1, 2, 3
STATUS_NAMES = {OK: 'OK', WARNING: 'WARNING', CRITICAL: 'CRITICAL', UNKNOWN: 'UNKNOWN'}
# Nagios ranking of states, an unknown result is worse than a warning
STATE_RANK = {OK: 0, WARNING: 1, UNKNOWN: 2, CRITICAL: 3}

SENSU_CLIENT_ADDRESS = ('127.0.0.1', 3030)

BASE_QUERY = "SHOW /*!50000 GLOBAL */ STATUS LIKE '{}'"
VARIABLE_QUERY = "SHOW VARIABLES LIKE '{}'"
SLAVE_QUERY = "SHOW SLAVE STATUS"

DEFAULT_CONFIG_FILE = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'mysql.json')

DEFAULTS = {
    'host'           : 'localhost',
    'port'           : 3306,
    'username'       : None,
    'password'       : None,
    'config_file'    : DEFAULT_CONFIG_FILE,
    'uptime'         : 300,
    'warn_conn'      : 80,
    'crit_conn'      : 90,
    'warn_slave_lag' : 60,
    'crit_slave_lag' : 120,
    'handlers'       : [],
    'dryrun'         : False,
    'verbose'        : 0,
}

INT_OPTIONS = ('port', 'uptime', 'warn_conn', 'crit_conn', 'warn_slave_lag', 'crit_slave_lag', 'verbose')

# config file keys that differ from the option destination
FILE_KEY_ALIASES = {
    'user'   : 'username',
    'config' : 'config_file',
}

# the config file path and logging verbosity are needed before the file is read
CLI_ONLY_OPTIONS = ('config_file', 'verbose')

# SHOW SLAVE STATUS columns, newer servers report the Replica/Source spelling
REPLICATION_FIELDS = {
    'io_running'     : ('Slave_IO_Running', 'Replica_IO_Running'),
    'sql_running'    : ('Slave_SQL_Running', 'Replica_SQL_Running'),
    'last_io_errno'  : ('Last_IO_Errno',),
    'last_io_error'  : ('Last_IO_Error',),
    'last_sql_errno' : ('Last_SQL_Errno',),
    'last_sql_error' : ('Last_SQL_Error',),
    'last_errno'     : ('Last_Errno',),
    'last_error'     : ('Last_Error',),
    'seconds_behind' : ('Seconds_Behind_Master', 'Seconds_Behind_Source'),
}

Configuration = namedtuple('Configuration', sorted(DEFAULTS))

ServerSnapshot = namedtuple('ServerSnapshot', [
    'uptime', 'threads_connected', 'max_connections', 'max_used_connections', 'replication'])

ReplicationStatus = namedtuple('ReplicationStatus', list(REPLICATION_FIELDS))

CheckResult = namedtuple('CheckResult', ['name', 'status', 'message'])


class NagiosReturn(Exception):


    def __init__(self, message, code):

        super(NagiosReturn, self).__init__(message)
        self.message = message
        self.code = code


class ConfigError(Exception):
    pass


def setup_logging(verbosity):

    logging.basicConfig(
        format='%(levelname)s %(asctime)s %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        level={
            0: logging.WARNING,
            1: logging.INFO,
        }.get(verbosity, logging.DEBUG),
    )


def build_parser():

    usage = "usage: %prog -u user --password password [-H host] [-p port] [options]"
    parser = OptionParser(usage=usage, version='%prog {}'.format(__version__))

    # Defaults stay None here so resolve_config can tell explicit options apart.
    required = OptionGroup(parser, "Required Options (command line or config file)")
    required.add_option('-u', '--user', dest='username', help='MySQL user')
    required.add_option('--password', dest='password', help='MySQL password')
    parser.add_option_group(required)

    connection = OptionGroup(parser, "Optional Connection Information")
    connection.add_option('-H', '--host', help='MySQL host (default: localhost)')
    connection.add_option('-p', '--port', type='int', help='MySQL port (default: 3306)')
    connection.add_option('-c', '--config', dest='config_file', metavar='PATH',
                          help='Optional configuration file (default: {})'.format(DEFAULT_CONFIG_FILE))
    parser.add_option_group(connection)

    thresholds = OptionGroup(parser, "Thresholds")
    thresholds.add_option('--uptime', type='int', metavar='SECONDS',
                          help='Warn if the server was restarted less than SECONDS ago (default: 300)')
    thresholds.add_option('--warn-conn', type='int', metavar='PERCENTAGE',
                          help='Warn if open connections reach PERCENTAGE of max connections (default: 80)')
    thresholds.add_option('--crit-conn', type='int', metavar='PERCENTAGE',
                          help='Critical if open connections reach PERCENTAGE of max connections (default: 90)')
    thresholds.add_option('--warn-slave-lag', type='int', metavar='SECONDS',
                          help='Warn if slave replication lag reaches SECONDS (default: 60)')
    thresholds.add_option('--crit-slave-lag', type='int', metavar='SECONDS',
                          help='Critical if slave replication lag reaches SECONDS (default: 120)')
    parser.add_option_group(thresholds)

    sensu = OptionGroup(parser, "Sensu Event Information")
    sensu.add_option('--handlers', metavar='HANDLER', help='Comma separated list of handlers')
    sensu.add_option('--dryrun', action='store_true',
                     help='Do not send events to sensu client socket')
    sensu.add_option('-v', '--verbose', action='count',
                     help='Verbose logging on stderr (use -vv for debug output)')
    parser.add_option_group(sensu)

    return parser


def split_handlers(value):

    if isinstance(value, str):
        return [handler for handler in value.split(',') if handler]
    if isinstance(value, list) and all(isinstance(handler, str) for handler in value):
        return list(value)
    raise ConfigError('Invalid value for handlers: {!r}'.format(value))


def to_bool(value):

    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def load_config_file(path):

    LOGGER.debug("trying to read %r", path)
    if not os.path.exists(path):
        LOGGER.debug("config file %s does not exist, skipping", path)
        return {}
    with open(path) as config_file:
        try:
            data = json.load(config_file)
        except ValueError as e:
            raise ConfigError('Invalid JSON in config file {}: {}'.format(path, e))
    if not isinstance(data, dict):
        raise ConfigError('Config file {} must contain a JSON object'.format(path))
    LOGGER.info("read configuration file %r", path)

    values = {}
    for name, value in data.items():
        key = FILE_KEY_ALIASES.get(name, name.replace('-', '_'))
        if key in CLI_ONLY_OPTIONS:
            LOGGER.warning("ignoring config file key %r, it can only be set on the command line", name)
            continue
        if key not in DEFAULTS:
            LOGGER.warning("ignoring unknown config file key %r", name)
            continue
        values[key] = value
    return values


def resolve_config(cli_values, defaults=DEFAULTS):
    """Merge defaults, the JSON config file and explicit command line values.

    cli_values maps option destinations to values, None meaning the option
    was not given. The config file path is resolved before the file is read.
    """

    explicit = dict((key, value) for key, value in cli_values.items() if value is not None)
    config_file = explicit.get('config_file', defaults['config_file'])

    merged = dict(defaults)
    merged.update(load_config_file(config_file))
    merged.update(explicit)
    merged['config_file'] = config_file

    try:
        for key in INT_OPTIONS:
            merged[key] = int(merged[key])
    except (TypeError, ValueError) as e:
        raise ConfigError('Invalid value for {}: {}'.format(key, e))
    merged['handlers'] = split_handlers(merged['handlers'])
    merged['dryrun'] = to_bool(merged['dryrun'])

    return Configuration(**merged)


def parse_args(argv=None):

    parser = build_parser()
    options, _ = parser.parse_args(argv)
    setup_logging(options.verbose or 0)
    config = resolve_config(vars(options))

    if not config.username:
        parser.error('MySQL user is required')
    if not config.password:
        parser.error('MySQL password is required')

    return config


def adapt_replication_row(row):

    if not row:
        return None
    values = {}
    for field, columns in REPLICATION_FIELDS.items():
        values[field] = None
        for column in columns:
            if row.get(column) is not None:
                values[field] = row[column]
                break
    return ReplicationStatus(**values)


class MySQLServer(object):


    def __init__(self, connection):

        self.connection = connection

    def fetch_row(self, query):

        cur = self.connection.cursor(pymysql.cursors.DictCursor)
        try:
            cur.execute(query)
            row = cur.fetchone()
        finally:
            cur.close()
        LOGGER.debug("%s -> %r", query, row)
        return row

    def fetch_value(self, query):

        row = self.fetch_row(query)
        if row is None:
            raise pymysql.err.ProgrammingError('No result for query: {}'.format(query))
        return int(row['Value'])

    def uptime(self):
        return self.fetch_value(BASE_QUERY.format('Uptime'))

    def threads_connected(self):
        return self.fetch_value(BASE_QUERY.format('Threads_connected'))

    def max_connections(self):
        return self.fetch_value(VARIABLE_QUERY.format('max_connections'))

    def max_used_connections(self):
        return self.fetch_value(BASE_QUERY.format('Max_used_connections'))

    def replication_status(self):
        return adapt_replication_row(self.fetch_row(SLAVE_QUERY))

    def snapshot(self):

        return ServerSnapshot(
            uptime=self.uptime(),
            threads_connected=self.threads_connected(),
            max_connections=self.max_connections(),
            max_used_connections=self.max_used_connections(),
            replication=self.replication_status(),
        )


def connect_db(config):

    LOGGER.info("connecting to %s:%s as %s", config.host, config.port, config.username)
    try:
        connection = pymysql.connect(host=config.host,
                                     port=config.port,
                                     user=config.username,
                                     password=config.password)
    except pymysql.MySQLError as e:
        raise NagiosReturn('MySQL server is down ({})'.format(e), CRITICAL)
    return connection


def threshold(percentage, max_connections):
    return percentage * max_connections // 100


def check_active_connections(snapshot, config):

    name = 'mysql-active_connections'
    current = snapshot.threads_connected
    crit = threshold(config.crit_conn, snapshot.max_connections)
    warn = threshold(config.warn_conn, snapshot.max_connections)
    if current >= crit:
        return CheckResult(name, CRITICAL,
                           'Too many active connections - Current: {} (>= {})'.format(current, crit))
    if current >= warn:
        return CheckResult(name, WARNING,
                           'High number of active connections - Current: {} (>= {})'.format(current, warn))
    return CheckResult(name, OK, '{} active connections (< {})'.format(current, warn))


def check_max_used_connections(snapshot, config):

    name = 'mysql-max_used_connections'
    max_used = snapshot.max_used_connections
    limit = threshold(config.crit_conn, snapshot.max_connections)
    # reaching the critical percentage only ever warns
    if max_used >= limit:
        return CheckResult(name, WARNING,
                           'MySQL server max used connections reached {} (>= {})'.format(max_used, limit))
    return CheckResult(name, OK, 'MySQL server max used connections is {} (< {})'.format(max_used, limit))


def check_thread(name, label, running, errno, error):

    if str(running).lower() != 'yes':
        return CheckResult(name, CRITICAL, 'MySQL slave {} thread not running (Errno: {}, Error: {})'.format(
            label, errno, error))
    return CheckResult(name, OK, 'MySQL slave {} thread is running'.format(label))


def check_replication(replication, config):

    results = []
    if replication is None:
        return results

    if replication.io_running is not None:
        results.append(check_thread('mysql-slave-io_thread', 'IO', replication.io_running,
                                    replication.last_io_errno, replication.last_io_error))

    if replication.sql_running is not None:
        results.append(check_thread('mysql-slave-sql_thread', 'SQL', replication.sql_running,
                                    replication.last_sql_errno, replication.last_sql_error))

    if replication.last_errno is not None:
        name = 'mysql-slave-last_errno'
        if int(replication.last_errno) != 0:
            results.append(CheckResult(name, CRITICAL, 'MySQL slave replication has failed with {} error ({})'.format(
                replication.last_errno, replication.last_error)))
        else:
            results.append(CheckResult(name, OK, 'MySQL slave replication has no errors'))

    if replication.seconds_behind is not None:
        name = 'mysql-slave-lag'
        lag = int(replication.seconds_behind)
        msg = 'MySQL slave replication is {}s behind master'.format(lag)
        if lag >= config.crit_slave_lag:
            results.append(CheckResult(name, CRITICAL, '{} (>= {}s)'.format(msg, config.crit_slave_lag)))
        elif lag >= config.warn_slave_lag:
            results.append(CheckResult(name, WARNING, '{} (>= {}s)'.format(msg, config.warn_slave_lag)))
        else:
            results.append(CheckResult(name, OK, 'MySQL slave replication is in sync'))

    return results


def evaluate(snapshot, config):

    results = [
        check_active_connections(snapshot, config),
        check_max_used_connections(snapshot, config),
    ]
    results.extend(check_replication(snapshot.replication, config))
    return results


def worst_status(states):

    worst = OK
    for state in states:
        if STATE_RANK[state] > STATE_RANK[worst]:
            worst = state
    return worst


def overall_status(results, snapshot, config):
    """Fold the per-check results and the uptime floor into one outcome.

    Returns a (status, message) tuple for the process exit.
    """

    status = worst_status(result.status for result in results)
    problems = ['{} {}'.format(result.name, STATUS_NAMES[result.status])
                for result in results if result.status != OK]

    messages = []
    if snapshot.uptime <= config.uptime:
        status = worst_status([status, WARNING])
        messages.append('MySQL server restarted {}s ago'.format(snapshot.uptime))
    if problems:
        messages.append('{} check(s) not OK: {}'.format(len(problems), ', '.join(problems)))

    if status == OK:
        return OK, 'MySQL server is running'
    return status, '; '.join(messages)


def format_output(status, message):
    return '{} {}: {}'.format(CHECK_TAG, STATUS_NAMES[status], message)


def make_event(result, handlers):

    return {
        'name'     : result.name,
        'status'   : result.status,
        'output'   : format_output(result.status, result.message),
        'handlers' : list(handlers),
    }


def send_event(event, dryrun=False):

    data = json.dumps(event)
    if dryrun:
        print(data)
        return
    LOGGER.debug("sending %s to %s:%s", data, *SENSU_CLIENT_ADDRESS)
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.sendto((data + '\n').encode('utf-8'), SENSU_CLIENT_ADDRESS)
    except OSError as e:
        LOGGER.debug("could not send event %s: %s", event['name'], e)


def run_checks(server, config):

    snapshot = server.snapshot()
    LOGGER.info("server snapshot: %r", snapshot)

    results = evaluate(snapshot, config)
    for result in results:
        send_event(make_event(result, config.handlers), config.dryrun)

    status, message = overall_status(results, snapshot, config)
    raise NagiosReturn(message, status)


def main(argv=None):

    config = parse_args(argv)
    LOGGER.debug("resolved configuration for %s:%s", config.host, config.port)

    connection = connect_db(config)
    try:
        run_checks(MySQLServer(connection), config)
    finally:
        connection.close()


def run(argv=None):

    try:
        main(argv)
    except NagiosReturn as e:
        print(format_output(e.code, e.message))
        sys.exit(e.code)
    except ConfigError as e:
        print(format_output(UNKNOWN, e))
        sys.exit(UNKNOWN)
    except pymysql.MySQLError as e:
        print(format_output(UNKNOWN, 'MySQL query failed ({})'.format(e)))
        sys.exit(UNKNOWN)
    except IOError as e:
        print(format_output(UNKNOWN, e))
        sys.exit(UNKNOWN)
    except Exception as e:
        LOGGER.debug("unexpected error", exc_info=True)
        print(format_output(UNKNOWN, 'Caught unexpected error: {} ({})'.format(e, type(e).__name__)))
        sys.exit(UNKNOWN)


if __name__ == '__main__':

    run()
