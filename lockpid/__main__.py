from lockpid.cli import main

raise SystemExit(main())
