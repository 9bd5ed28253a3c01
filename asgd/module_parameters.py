"""
This package implements a simple way of dealing with parameters, of providing
default parameters and comments, and to keep track of used parameters for
optimization runs. Settings which may differ between resolution levels can be
given either as a single value (used for all levels) or as a list with one
entry per level.
"""
import json


class ParameterDict(object):
    def __init__(self, initDict=None, printSettings=True):
        if initDict is not None:
            if isinstance(initDict, ParameterDict):
                self.ext = initDict.ext
            else:
                print('WARNING: Cannot initialize from non ParameterDict object. Ignoring initialization.')
                self.ext = {}
        else:
            self.ext = {}
        self.int = {}
        self.com = {}
        self.currentCategoryName = 'root'
        self.printSettings = printSettings

    def __str__(self):
        return 'ext = ' + "\n" + json.dumps(self.ext, indent=4, sort_keys=True) + "\n" + \
               'int = ' + "\n" + json.dumps(self.int, indent=4, sort_keys=True) + "\n" + \
               'com = ' + "\n" + json.dumps(self.com, indent=4, sort_keys=True) + "\n" + \
               'currentCategoryName = ' + str(self.currentCategoryName) + "\n"

    def isempty(self):
        return self.int == {}

    def load_JSON(self, fileName):
        """
        Loads a JSON configuration file

        :param fileName: filename of the configuration to be loaded
        """
        try:
            with open(fileName) as data_file:
                if self.printSettings:
                    print('Loading parameter file = ' + fileName)
                self.ext = json.load(data_file)
        except IOError:
            print('Could not open file = ' + str(fileName) + '; ignoring request.')

    def write_JSON(self, fileName, save_int=True):
        """
        Writes the JSON configuration to a file

        :param fileName: filename to write the configuration to
        :param save_int: if True only the settings which were actually used are written
        """
        with open(fileName, 'w') as outfile:
            if self.printSettings:
                print('Writing parameter file = ' + fileName)
            if save_int:
                json.dump(self.int, outfile, indent=4, sort_keys=True)
            else:
                json.dump(self.ext, outfile, indent=4, sort_keys=True)

    def write_JSON_comments(self, fileNameComments):
        """
        Writes the JSON comments file. This file will not contain any actual values, but
        descriptions of the settings (if they have been provided).

        :param fileNameComments: filename to write the commented JSON configuration to
        """
        with open(fileNameComments, 'w') as outfile:
            if self.printSettings:
                print('Writing parameter file = ' + fileNameComments)
            json.dump(self.com, outfile, indent=4, sort_keys=True)

    def print_settings_on(self):
        self.printSettings = True

    def print_settings_off(self):
        self.printSettings = False

    def get_print_settings(self):
        return self.printSettings

    def _set_value_of_instance(self, ext, int, com, currentCategoryName):
        self.ext = ext
        self.int = int
        self.com = com
        self.currentCategoryName = currentCategoryName

    def __getitem__(self, key_or_keyTuple):
        # the key can be
        # 1) simply a text key (then returns the current value)
        # 2) a 2-tuple (keyname,defaultvalue)
        # 3) a 3-tuple (keyname,defaultvalue,comment)
        # returns a ParameterDict if a category is accessed, the value otherwise
        if isinstance(key_or_keyTuple, tuple):
            if len(key_or_keyTuple) in [1, 2, 3]:
                return self._get_current_key(*key_or_keyTuple)
            else:
                raise ValueError('Tuple of incorrect size')
        else:
            return self._get_current_key(key_or_keyTuple)

    def __setitem__(self, key, valueTuple):
        # valueTuple is either a 2-tuple (actual value, comment)
        # or a 1-tuple with a comment, then this key becomes a category
        if isinstance(valueTuple, tuple):
            if len(valueTuple) == 2:
                value, comment = valueTuple
            elif len(valueTuple) == 1:
                value = {}
                comment = valueTuple[0]
            else:
                raise ValueError('Expected a 2-tuple as input')
        else:
            value = valueTuple
            comment = None

        if isinstance(value, dict):
            if len(value) == 0:
                self._set_current_category(key, comment)
            else:
                raise ValueError('Can only add empty dictionaries')
        elif isinstance(value, ParameterDict):
            # add the content and not the object itself
            self.ext[key] = value.ext
            self.int[key] = {}
            self.com[key] = {}
        else:
            self._set_current_key(key, value, comment)

    def _set_current_category(self, key, comment):
        currentCategoryName = self.currentCategoryName + '.' + str(key)

        if key not in self.ext or not isinstance(self.ext[key], dict):
            if self.printSettings:
                print('Creating new category: ' + currentCategoryName)
            self.ext[key] = {}

        self.int[key] = {}
        self.com[key] = {}

        if comment:
            self.com[key]['__doc__'] = comment

    def _set_current_key(self, key, value, comment=None):
        if self.printSettings:
            if key in self.ext:
                print('Overwriting key = ' + str(key) + '; category = ' + self.currentCategoryName + '; value =  ' +
                      str(self.ext[key]) + ' -> ' + str(value))
            else:
                print('Creating key = ' + str(key) + '; category = ' + self.currentCategoryName + '; value = ' + str(value))

        self.ext[key] = value
        self.int[key] = value
        if comment:
            self.com[key] = comment

    def _recursive_has_key(self, current_key_list, current_dict):
        if current_key_list[0] not in current_dict:
            return False
        if len(current_key_list) == 1:
            return True
        return self._recursive_has_key(current_key_list[1:], current_dict[current_key_list[0]])

    def has_key(self, key_list):
        if len(key_list) < 1:
            raise ValueError('At least one key expected in key list')
        return self._recursive_has_key(key_list, self.ext)

    def _category(self, key, comment=None):
        if key not in self.int:
            self.int[key] = {}
        if key not in self.com:
            self.com[key] = {}
            if comment:
                self.com[key]['__doc__'] = comment

        newpar = ParameterDict(printSettings=self.printSettings)
        newpar._set_value_of_instance(self.ext[key], self.int[key], self.com[key],
                                      self.currentCategoryName + '.' + str(key))
        return newpar

    def _get_current_key(self, key, defaultValue=None, comment=None):
        if key in self.ext:
            value = self.ext[key]
            if isinstance(value, dict):
                return self._category(key, comment)

            self.int[key] = value
            if comment:
                self.com[key] = comment
            return value

        # key does not exist yet, create it via the default value
        if defaultValue is None:
            defaultValue = {}

        if isinstance(defaultValue, dict):
            if len(defaultValue) == 0:
                self._set_current_category(key, comment)
                return self._category(key, comment)
            else:
                raise ValueError('Cannot create a default key of type dict()')

        self.ext[key] = defaultValue
        self.int[key] = defaultValue
        if comment:
            self.com[key] = comment
        if self.printSettings:
            print('Using default value = ' + str(defaultValue) + ' for key = ' + str(key) +
                  ' of category = ' + self.currentCategoryName)
        return defaultValue

    def get_resolution_value(self, key, level, nr_of_resolutions, defaultValue=None, comment=None):
        """
        Returns the value of a setting for one resolution level. The setting may be stored as a
        scalar (valid for all levels) or as a list with exactly one entry per level.

        :param key: name of the setting
        :param level: resolution level (starting at 0)
        :param nr_of_resolutions: total number of resolution levels
        :param defaultValue: value used (and recorded) if the setting does not exist;
            None means the setting is optional and None is returned if it is absent
        :param comment: description of the setting
        :return: value for the requested level
        """
        if level < 0 or level >= nr_of_resolutions:
            raise ValueError('Resolution level ' + str(level) + ' outside of [0,' + str(nr_of_resolutions) + ')')

        if defaultValue is None and key not in self.ext:
            return None

        value = self._get_current_key(key, defaultValue, comment)
        if isinstance(value, ParameterDict):
            raise ValueError('Setting ' + self.currentCategoryName + '.' + str(key) + ' is a category, not a value')
        if isinstance(value, (list, tuple)):
            if len(value) == 1:
                return value[0]
            elif len(value) == nr_of_resolutions:
                return value[level]
            else:
                raise ValueError('Setting ' + self.currentCategoryName + '.' + str(key) + ' has ' + str(len(value)) +
                                 ' entries; expected 1 or ' + str(nr_of_resolutions) + ' (one per resolution)')
        return value
