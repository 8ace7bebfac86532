import os
from typing import Optional

debug = False


def init( d: bool ) -> None:
    """
    Set the module-level debug flag.

    Requires:
        - d is a boolean

    Ensures:
        - Module-level debug flag reflects d
    """
    global debug
    debug = d


def print_banner( msg: str, expletive: bool = False, chunk: str = "¡@#!-$?%^_¿",
                  end: str = "\n\n", prepend_nl: bool = False, flex: bool = False ) -> None:
    """
    Print a message to console with decorative header/footer lines.

    Requires:
        - msg is a string to display in the banner
        - chunk is a string used for decoration in expletive mode

    Ensures:
        - Prints the message with decorative lines above and below
        - Uses expletive decoration style if expletive=True
        - Uses flexible width if flex=True
        - Prepends a newline if prepend_nl=True

    Args:
        msg: The message to print in the banner
        expletive: Whether to use "cartoon-style" error decoration (default: False)
        chunk: The string to use for expletive decoration
        end: The string to print after the banner (default: "\n\n")
        prepend_nl: Whether to print a newline before the banner (default: False)
        flex: Whether to adapt line length to message length (default: False)
    """
    if prepend_nl: print()

    max_len = 120
    if expletive:
        bar_len = max_len
        bar_str = ( chunk * ( bar_len // len( chunk ) + 1 ) )[ :bar_len ]
    elif flex:
        bar_len = max( [ len( line ) for line in msg.split( "\n" ) ] ) + 2
        bar_str = "-" * bar_len
    else:
        bar_str = "-" * max_len

    print( bar_str )
    if expletive:
        print( chunk )
        print( chunk, msg )
        print( chunk )
    else:
        print( "-", msg )
    print( bar_str, end=end )


def get_project_root() -> str:
    """
    Get the root directory used for local configuration and key files.

    Ensures:
        - Returns TRANCE_ROOT when set in the environment
        - Otherwise returns the current working directory

    Returns:
        The absolute path to the project root directory
    """
    if debug:
        print( f" TRANCE_ROOT [{os.getenv( 'TRANCE_ROOT' )}]" )
        print( f"os.getcwd() [{os.getcwd()}]" )

    return os.environ.get( "TRANCE_ROOT", os.getcwd() )


def truncate_string( string: Optional[ str ], max_len: int = 64, ellipsis: bool = True ) -> str:
    """
    Truncate a string if it exceeds a maximum length.

    Requires:
        - max_len is a positive integer

    Ensures:
        - Returns "" for None
        - Returns the original string if its length is <= max_len
        - Returns the first max_len characters, plus "..." when ellipsis is True

    Args:
        string: The string to truncate if needed
        max_len: Maximum length before truncation (default: 64)
        ellipsis: Append "..." to truncated strings (default: True)

    Returns:
        The original or truncated string
    """
    if not string:
        return ""

    if len( string ) > max_len:
        string = string[ :max_len ] + ( "..." if ellipsis else "" )

    return string
