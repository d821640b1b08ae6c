import logging
import os
import pathlib
import re
import shutil
import stat
import subprocess  # nosec B404
import tempfile
import time
from shutil import rmtree
from typing import (
    IO,
    Dict,
    List,
    NamedTuple,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from ltsupgrade import exceptions, util

OS_RELEASE_PATHS = ("/etc/os-release", "/usr/lib/os-release")
PROC_MEMINFO = "/proc/meminfo"
PROC_STAT = "/proc/stat"

LOG = logging.getLogger(util.replace_top_level_logger_name(__name__))

ReleaseInfo = NamedTuple(
    "ReleaseInfo",
    [
        ("distribution", str),
        ("release", str),
        ("series", str),
        ("pretty_version", str),
    ],
)

MemoryInfo = NamedTuple(
    "MemoryInfo",
    [
        ("total_mb", int),
        ("available_mb", int),
        ("used_percent", int),
    ],
)

RunningProcess = NamedTuple(
    "RunningProcess",
    [
        ("pid", int),
        ("name", str),
    ],
)


def _parse_os_release() -> Dict[str, str]:
    file_contents = ""
    for path in OS_RELEASE_PATHS:
        try:
            file_contents = load_file(path)
            break
        except FileNotFoundError:
            continue
    data = {}
    for line in file_contents.splitlines():
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        if value:
            data[key] = value.strip().strip('"')
    return data


def get_release_info() -> ReleaseInfo:
    """Return the release of the running system.

    Not cached: do-release-upgrade replaces /etc/os-release while we run.
    """
    os_release = _parse_os_release()
    return ReleaseInfo(
        distribution=os_release.get("NAME", "UNKNOWN"),
        release=os_release.get("VERSION_ID", ""),
        series=os_release.get("VERSION_CODENAME", "").lower(),
        pretty_version=os_release.get("VERSION", ""),
    )


def get_release_version() -> str:
    """Return the release number reported by lsb_release, e.g. 22.04"""
    try:
        out, _err = subp(["lsb_release", "-rs"])
    except exceptions.ProcessExecutionError as e:
        LOG.warning("lsb_release failed, falling back to os-release: %s", e)
        return get_release_info().release
    return out.strip()


def which(program: str) -> Optional[str]:
    """Find whether the provided program is executable in our PATH"""
    if os.path.sep in program:
        # if program had a '/' in it, then do not search PATH
        if is_exe(program):
            return program
    paths = [
        p.strip('"') for p in os.environ.get("PATH", "").split(os.pathsep)
    ]
    normalized_paths = [os.path.abspath(p) for p in paths]
    for path in normalized_paths:
        program_path = os.path.join(path, program)
        if is_exe(program_path):
            return program_path
    return None


def is_exe(path: str) -> bool:
    # return boolean indicating if path exists and is executable.
    return os.path.isfile(path) and os.access(path, os.X_OK)


def load_file(filename: str) -> str:
    """Read filename and decode content."""
    with open(filename, "rb") as stream:
        LOG.debug("Reading file: %s", filename)
        content = stream.read()
    return content.decode("utf-8", errors="replace")


def ensure_dir(path: str, mode: int) -> None:
    os.makedirs(path, mode=mode, exist_ok=True)
    os.chmod(path, mode)


def write_file(
    filename: str, content: str, mode: Optional[int] = None
) -> None:
    """Write content to the provided filename encoding it if necessary.

    The content goes to a temporary file in the same directory which is then
    renamed over filename, so readers only ever see the old or the new
    content. We preserve the file ownership and permissions if the file is
    present and no mode argument is provided.

    @param filename: The full path of the file to write.
    @param content: The content to write to the file.
    @param mode: The filesystem mode to set on the file.
    """
    tmpf = None
    is_file_present = os.path.isfile(filename)
    if is_file_present:
        file_stat = pathlib.Path(filename).stat()
        f_mode = stat.S_IMODE(file_stat.st_mode)
        if mode is None:
            mode = f_mode

    elif mode is None:
        mode = 0o644
    try:
        os.makedirs(os.path.dirname(filename), exist_ok=True)
        tmpf = tempfile.NamedTemporaryFile(
            mode="wb", delete=False, dir=os.path.dirname(filename)
        )
        LOG.debug(
            "Writing file %s atomically via tempfile %s", filename, tmpf.name
        )
        tmpf.write(content.encode("utf-8"))
        tmpf.flush()
        # the content has to survive the reboot that usually follows
        os.fsync(tmpf.fileno())
        tmpf.close()
        os.chmod(tmpf.name, mode)
        if is_file_present:
            os.chown(tmpf.name, file_stat.st_uid, file_stat.st_gid)
        os.rename(tmpf.name, filename)
    except Exception as e:
        if tmpf is not None:
            os.unlink(tmpf.name)
        raise e


def ensure_file_absent(file_path: str) -> None:
    """Remove a file if it exists, logging a message about removal."""
    try:
        os.unlink(file_path)
        LOG.debug("Removed file: %s", file_path)
    except FileNotFoundError:
        LOG.debug("Tried to remove %s but file does not exist", file_path)


def ensure_folder_absent(folder_path: str) -> None:
    try:
        rmtree(folder_path)
        LOG.debug("Removed folder: %s", folder_path)
    except FileNotFoundError:
        LOG.debug("Tried to remove %s but folder does not exist", folder_path)


def _subp(
    args: Sequence[str],
    rcs: Optional[List[int]] = None,
    capture: bool = False,
    timeout: Optional[float] = None,
    override_env_vars: Optional[Dict[str, str]] = None,
    pipe_stdouterr: bool = True,
    stdin_file: Optional[IO[bytes]] = None,
    stdout_file: Optional[IO[bytes]] = None,
) -> Tuple[str, str]:
    """Run a command and return a tuple of decoded stdout, stderr.

    @param args: A list of arguments to feed to subprocess.Popen
    @param rcs: A list of allowed return_codes. If returncode not in rcs
        raise a ProcessExecutionError.
    @param capture: Boolean set True to log the command and response.
    @param timeout: Optional float indicating number of seconds to wait for
        subp to return. The child is killed when the timeout expires.
    @param override_env_vars: Optional dictionary of environment variables
        merged over os.environ for the child.
    @param pipe_stdouterr: Set False to let the child inherit our stdout
        and stderr.
    @param stdin_file: Optional open file the child reads its input from.
    @param stdout_file: Optional open file receiving the child's stdout
        instead of a pipe; the returned stdout is then empty. Files are
        opened by us, so the child needs no access to their path.

    @return: Tuple of utf-8 decoded stdout, stderr
    @raises ProcessExecutionError on invalid command or returncode not in rcs.
    @raises subprocess.TimeoutExpired when timeout specified and the command
        exceeds that number of seconds.
    """
    bytes_args = [
        x if isinstance(x, bytes) else x.encode("utf-8") for x in args
    ]

    stdout = None  # type: Optional[Union[int, IO[bytes]]]
    stderr = None
    set_lang = {}

    if pipe_stdouterr:
        stdout = subprocess.PIPE
        stderr = subprocess.PIPE
        # Set LANG to avoid non-utf8 when we pipe the handlers
        set_lang = {"LANG": "C.UTF-8", "LC_ALL": "C.UTF-8"}
    if stdout_file is not None:
        stdout = stdout_file

    if override_env_vars is None:
        override_env_vars = {}
    merged_env = {**os.environ, **set_lang, **override_env_vars}

    if rcs is None:
        rcs = [0]
    redacted_cmd = util.redact_sensitive_logs(" ".join(args))
    try:
        proc = subprocess.Popen(  # nosec B603
            bytes_args,
            stdin=stdin_file,
            stdout=stdout,
            stderr=stderr,
            env=merged_env,
        )
    except OSError:
        raise exceptions.ProcessExecutionError(cmd=redacted_cmd)

    try:
        (out, err) = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        LOG.error("Killing %s after %s seconds", redacted_cmd, timeout)
        proc.kill()
        proc.communicate()
        raise

    out_result = out.decode("utf-8", errors="ignore") if out else ""
    err_result = err.decode("utf-8", errors="ignore") if err else ""
    if proc.returncode not in rcs:
        raise exceptions.ProcessExecutionError(
            cmd=redacted_cmd,
            exit_code=proc.returncode,
            stdout=out_result,
            stderr=err_result,
        )
    if capture:
        LOG.debug(
            "Ran cmd: %s, rc: %s stderr: %s",
            redacted_cmd,
            proc.returncode,
            err_result,
        )
    return out_result, err_result


def subp(
    args: Sequence[str],
    rcs: Optional[List[int]] = None,
    capture: bool = False,
    timeout: Optional[float] = None,
    retry_sleeps: Optional[List[float]] = None,
    override_env_vars: Optional[Dict[str, str]] = None,
    pipe_stdouterr: bool = True,
    stdin_file: Optional[IO[bytes]] = None,
    stdout_file: Optional[IO[bytes]] = None,
) -> Tuple[str, str]:
    """Run a command through _subp, retrying failures after retry_sleeps.

    @param retry_sleeps: Optional list of sleep lengths to apply between
        retries. [0.5, 1] retries twice, sleeping half a second before the
        first retry and 1 second before the next one. Leave it unset along
        with stdin_file or stdout_file, a retry would see them half used.

    The other parameters are those of _subp.
    """
    retry_sleeps = retry_sleeps.copy() if retry_sleeps is not None else None
    while True:
        try:
            out, err = _subp(
                args,
                rcs,
                capture,
                timeout,
                override_env_vars=override_env_vars,
                pipe_stdouterr=pipe_stdouterr,
                stdin_file=stdin_file,
                stdout_file=stdout_file,
            )
            break
        except exceptions.ProcessExecutionError as e:
            if capture:
                LOG.debug(str(e))
                LOG.warning("Stderr: %s\nStdout: %s", e.stderr, e.stdout)
            if not retry_sleeps:
                raise
            LOG.debug(str(e))
            LOG.debug("Retrying %d more times.", len(retry_sleeps))
            time.sleep(retry_sleeps.pop(0))
    return out, err


def is_pid_alive(pid: int) -> bool:
    """Return True when pid denotes a running process."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, but owned by somebody else
        return True
    return True


def find_processes(names: Sequence[str]) -> List[RunningProcess]:
    """Return the running processes whose name matches one of names."""
    found = []  # type: List[RunningProcess]
    for name in names:
        out, _err = subp(["pgrep", "-x", name], rcs=[0, 1])
        for line in out.splitlines():
            line = line.strip()
            if line.isdigit() and int(line) != os.getpid():
                found.append(RunningProcess(pid=int(line), name=name))
    return found


def get_process_name(pid: int) -> str:
    try:
        return load_file("/proc/{}/comm".format(pid)).strip()
    except OSError:
        return "unknown"


def find_file_users(paths: Sequence[str]) -> List[RunningProcess]:
    """Return the processes, other than ours, having any of paths open."""
    existing = [path for path in paths if os.path.exists(path)]
    if not existing:
        return []
    # fuser prints the pids on stdout, file names and access on stderr
    out, _err = subp(["fuser"] + existing, rcs=[0, 1])
    pids = sorted({int(pid) for pid in re.findall(r"\d+", out)})
    return [
        RunningProcess(pid=pid, name=get_process_name(pid))
        for pid in pids
        if pid != os.getpid()
    ]


def get_free_disk_space_mb(
path: str) -> int:
    return shutil.disk_usage(path).free // (1024 * 1024)


def get_disk_usage_percent(path: str) -> int:
    usage = shutil.disk_usage(path)
    if not usage.total:
        return 0
    return int(usage.used * 100 / usage.total)


def get_memory_info() -> MemoryInfo:
    values = {}  # type: Dict[str, int]
    for line in load_file(PROC_MEMINFO).splitlines():
        match = re.match(r"^(?P<key>\w+):\s+(?P<kb>\d+)", line)
        if match:
            values[match.group("key")] = int(match.group("kb"))
    total_mb = values.get("MemTotal", 0) // 1024
    available_mb = values.get("MemAvailable", values.get("MemFree", 0)) // 1024
    used_percent = (
        int((total_mb - available_mb) * 100 / total_mb) if total_mb else 0
    )
    return MemoryInfo(
        total_mb=total_mb,
        available_mb=available_mb,
        used_percent=used_percent,
    )


def get_boot_time() -> Optional[float]:
    """Return when the host booted, in seconds since the epoch."""
    for line in load_file(PROC_STAT).splitlines():
        if line.startswith("btime "):
            return float(line.split()[1])
    return None


def get_load_average() -> float:
    return os.getloadavg()[0]


def is_host_reachable(host: str, timeout: int = 5) -> bool:
    try:
        subp(["ping", "-c", "1", "-W", str(timeout), host])
    except exceptions.ProcessExecutionError:
        return False
    return True


def schedule_reboot(delay_minutes: int, message: str) -> None:
    """Ask the host to reboot in delay_minutes, leaving time to log out."""
    subp(["shutdown", "-r", "+{}".format(delay_minutes), message])
