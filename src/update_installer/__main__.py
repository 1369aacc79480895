from update_installer.cli import main

raise SystemExit(main())
