# Core: settings, runtime context, errors
