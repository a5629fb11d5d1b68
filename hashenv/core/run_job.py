"""
:mod:`hashenv.core.run_job` --- Running build commands
======================================================

The build engine is the collaborator that actually compiles code. The
build executor hands it a list of commands, the build environment and
the working directory, and gets an :class:`EngineResult` back; the
engine never raises on command failure, it reports it.

:class:`SubprocessEngine` runs each command with :mod:`subprocess`:

 * A command is a list of strings passed to ``Popen`` as is (no shell,
   no quoting, no globbing), after variable substitution. The syntax is
   ``$CFLAGS`` and ``${CFLAGS}``; ``\\$`` is an escape for ``$``.

 * The environment of the caller is not inherited; only the variables
   passed in are visible to the commands.

 * stdout and stderr are merged, logged line by line at DEBUG level and
   collected verbatim into the result.

 * Commands run in order and the first failure stops the run. A
   `timeout` covers the whole run; when it expires the running command
   is killed and the result has `timed_out` set.
"""

import errno
import subprocess
import time
from string import Template
from collections import namedtuple


class EngineResult(namedtuple('EngineResult', 'returncode output timed_out')):
    """`returncode` is that of the last command run, `output` all output as text"""

    @property
    def succeeded(self):
        return self.returncode == 0 and not self.timed_out


def substitute(x, env):
    """
    Substitute environment variables into a string following the rules
    documented above.

    Raises KeyError if a referenced variable is not present in env
    (``$$`` always raises KeyError)
    """
    if '$$' in x:
        # it's the escape character of string.Template, hence the special case
        raise KeyError('$$ is not allowed (no variable can be named $): %s' % x)
    x = x.replace(r'\$', '$$')
    return Template(x).substitute(env)


class SubprocessEngine(object):

    def run(self, commands, env, cwd, logger, timeout=None):
        output = []
        deadline = None if timeout is None else time.time() + timeout
        returncode = 0
        for cmd in commands:
            try:
                args = [substitute(arg, env) for arg in cmd]
            except KeyError as e:
                output.append('undefined variable %s in command %r\n' % (e, cmd))
                return EngineResult(1, ''.join(output), False)
            logger.info('running %r' % args)
            remaining = None if deadline is None else max(deadline - time.time(), 0)
            returncode, out, timed_out = self.run_cmd(args, env, cwd, remaining)
            for line in out.splitlines():
                logger.debug(line)
            output.append(out)
            if timed_out:
                logger.error('command timed out after %s seconds' % timeout)
                return EngineResult(returncode, ''.join(output), True)
            if returncode != 0:
                logger.error('command failed (code=%d)' % returncode)
                return EngineResult(returncode, ''.join(output), False)
        return EngineResult(returncode, ''.join(output), False)

    def run_cmd(self, args, env, cwd, timeout):
        try:
            proc = subprocess.Popen(args, cwd=cwd, env=env,
                                    stdin=subprocess.DEVNULL,
                                    stdout=subprocess.PIPE,
                                    stderr=subprocess.STDOUT,
                                    close_fds=True)
        except OSError as e:
            if e.errno == errno.ENOENT:
                # fix error message up a bit since the situation is so confusing
                if '/' in args[0]:
                    msg = 'command "%s" not found (cwd: %s)\n' % (args[0], cwd)
                else:
                    msg = 'command "%s" not found in $PATH (cwd: %s)\n' % (args[0], cwd)
                return 127, msg, False
            raise
        try:
            out, _ = proc.communicate(timeout=timeout)
            timed_out = False
        except subprocess.TimeoutExpired:
            proc.kill()
            out, _ = proc.communicate()
            timed_out = True
        return proc.returncode, out.decode('utf-8', 'replace'), timed_out
